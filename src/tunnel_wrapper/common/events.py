"""Observer lists and the typed event channel exposed by every tunnel.

Listeners are plain callables registered with ``subscribe``/``on``; the
returned :class:`Handle` unregisters them. Removing a handle twice is a no-op.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EventType(str, Enum):
    """Events emitted by a tunnel."""

    DOWNLOAD_PROGRESS = "downloadprogress"
    POST_DOWNLOAD = "postdownload"
    STDOUT = "stdout"
    STDERR = "stderr"
    STATUS = "status"


class DownloadProgressEvent(BaseModel):
    """Bytes received so far for one artifact download."""

    model_config = ConfigDict(frozen=True)

    url: str
    received: int = Field(ge=0)
    total: int | None = Field(default=None, description="None when the server sends no length")


class PostDownloadEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class OutputEvent(BaseModel):
    """A decoded chunk of tunnel process output."""

    model_config = ConfigDict(frozen=True)

    data: str


class StatusEvent(BaseModel):
    """Human-readable lifecycle narration."""

    model_config = ConfigDict(frozen=True)

    message: str


class Handle:
    """Removal handle for a registered listener."""

    def __init__(self, remover: Callable[[], None]):
        self._remover: Callable[[], None] | None = remover

    @property
    def removed(self) -> bool:
        return self._remover is None

    def remove(self) -> None:
        remover, self._remover = self._remover, None
        if remover is not None:
            remover()


def remove_all(handles: list[Handle]) -> None:
    """Remove and forget every handle in the list."""
    while handles:
        handles.pop().remove()


class Observable(Generic[T]):
    """Ordered list of listeners receiving every published value."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], None]) -> Handle:
        """Register a listener.

        Args:
            listener: Callable invoked with every published value

        Returns:
            Handle whose ``remove()`` unregisters the listener
        """
        self._listeners.append(listener)

        def remover() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Handle(remover)

    def publish(self, value: T) -> None:
        """Deliver a value to the listeners registered at call time, in order.

        A failing listener is logged and does not prevent delivery to the rest.
        """
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Event listener failed", listener=repr(listener))


class EventChannel:
    """Multi-consumer channel of typed tunnel events."""

    def __init__(self) -> None:
        self._observers: dict[EventType, Observable[Any]] = {
            event_type: Observable() for event_type in EventType
        }

    def on(self, event_type: EventType | str, listener: Callable[[Any], None]) -> Handle:
        """Listen for one event type.

        Args:
            event_type: Event type or its string value (e.g. ``"stdout"``)
            listener: Callable receiving the event model

        Returns:
            Handle whose ``remove()`` unregisters the listener

        Raises:
            ValueError: If the event type is unknown
        """
        return self._observers[EventType(event_type)].subscribe(listener)

    def emit(self, event_type: EventType, event: BaseModel) -> None:
        self._observers[event_type].publish(event)

    def listener_count(self, event_type: EventType | str) -> int:
        return len(self._observers[EventType(event_type)])
