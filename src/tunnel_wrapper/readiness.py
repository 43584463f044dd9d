"""Readiness detection for spawned tunnel processes.

A detector is attached to a freshly spawned :class:`~tunnel_wrapper.process.ChildHandle`
together with the child's :class:`StartupSignal`. It watches output (or a
sentinel file) and settles the signal exactly once: ``resolve()`` when the
tunnel is usable, ``reject(error)`` when the vendor reports a failure. The
detector removes its own subscriptions when the signal settles, whoever
settled it.
"""

from __future__ import annotations

import asyncio
import re
import tempfile
import uuid
from collections.abc import Callable, Sequence
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .common.events import Handle, remove_all
from .common.exceptions import StartupDetectedFailure
from .common.logging import get_logger

if TYPE_CHECKING:
    from .process import ChildHandle

logger = get_logger(__name__)

SENTINEL_POLL_INTERVAL = 1.0

StreamName = Literal["stdout", "stderr"]


class StartupSignal:
    """Single-resolution outcome of a tunnel startup.

    Only the first ``resolve``/``reject``/``cancel`` has an effect; later calls
    return False and are otherwise ignored.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    @property
    def pending(self) -> bool:
        return not self._future.done()

    @property
    def ready(self) -> bool:
        """True once the tunnel has been confirmed usable."""
        return (
            self._future.done()
            and not self._future.cancelled()
            and self._future.exception() is None
        )

    def resolve(self) -> bool:
        if self._future.done():
            return False
        self._future.set_result(None)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            logger.debug("Ignoring startup failure after settlement", error=str(error))
            return False
        self._future.set_exception(error)
        return True

    def cancel(self) -> bool:
        return self._future.cancel()

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        """Run callback (without arguments) once the signal settles."""
        self._future.add_done_callback(lambda _future: callback())

    async def wait(self) -> None:
        """Wait until the tunnel is ready.

        Raises:
            Exception: The error the signal was rejected with
        """
        await self._future


class LineBuffer:
    """Splits a stream of text chunks into complete lines."""

    def __init__(self) -> None:
        self.partial = ""

    def feed(self, chunk: str) -> list[str]:
        *lines, self.partial = (self.partial + chunk).split("\n")
        return [line.rstrip("\r") for line in lines]


class ReadinessDetector:
    """Default detector: the tunnel is ready once it writes anything.

    Used when a vendor supplies nothing better. Subclasses override
    :meth:`attach` and set :attr:`ready_file` when readiness is signalled
    through the filesystem.
    """

    ready_file: Path | None = None

    def __init__(self) -> None:
        self._handles: list[Handle] = []

    def attach(self, child: ChildHandle, signal: StartupSignal) -> None:
        def on_output(_chunk: str) -> None:
            self.close()
            signal.resolve()

        self._handles.extend(
            [child.stdout.subscribe(on_output), child.stderr.subscribe(on_output)]
        )
        signal.add_done_callback(self.close)

    def close(self) -> None:
        """Release subscriptions and other resources; safe to call repeatedly."""
        remove_all(self._handles)


class OutputPatternDetector(ReadinessDetector):
    """Scans output lines for a vendor's success and error phrases."""

    def __init__(
        self,
        ready: str | re.Pattern[str] | None = None,
        error: str | re.Pattern[str] | None = None,
        *,
        streams: Sequence[StreamName] = ("stdout",),
        error_format: str = "{}",
    ):
        """Initialize OutputPatternDetector.

        Args:
            ready: Regex whose match on a line (or an unterminated tail) means ready
            error: Regex whose match on a complete line means startup failed;
                its first group, if any, becomes the error detail
            streams: Streams to scan
            error_format: Format string for the failure message, receives the detail
        """
        super().__init__()
        self.ready_pattern = re.compile(ready) if isinstance(ready, str) else ready
        self.error_pattern = re.compile(error) if isinstance(error, str) else error
        self.streams = tuple(streams)
        self.error_format = error_format
        self._signal: StartupSignal | None = None

    def attach(self, child: ChildHandle, signal: StartupSignal) -> None:
        self._signal = signal
        for name in self.streams:
            listener = partial(self._on_output, LineBuffer())
            self._handles.append(child.stream(name).subscribe(listener))
        signal.add_done_callback(self.close)

    def _on_output(self, buffer: LineBuffer, chunk: str) -> None:
        for line in buffer.feed(chunk):
            if self._check_error(line) or self._check_ready(line):
                return
        if buffer.partial:
            self._check_ready(buffer.partial)

    def _check_error(self, line: str) -> bool:
        if self.error_pattern is None or self._signal is None:
            return False
        match = self.error_pattern.search(line)
        if match is None:
            return False
        detail = match.group(1) if match.groups() else line.strip()
        self.close()
        self._signal.reject(StartupDetectedFailure(self.error_format.format(detail)))
        return True

    def _check_ready(self, line: str) -> bool:
        if self.ready_pattern is None or self._signal is None:
            return False
        if self.ready_pattern.search(line) is None:
            return False
        self.close()
        self._signal.resolve()
        return True


class SentinelFileDetector(ReadinessDetector):
    """Resolves when the tunnel touches its ready file.

    The file's modification time is polled rather than watched with OS file
    notification APIs. Polling stops after the first change and the file is
    deleted when the detector closes.
    """

    def __init__(
        self,
        prefix: str = "tunnel",
        *,
        interval: float = SENTINEL_POLL_INTERVAL,
        directory: Path | None = None,
    ):
        super().__init__()
        self.interval = interval
        base = Path(directory) if directory is not None else Path(tempfile.gettempdir())
        self.path = base / f"{prefix}-{uuid.uuid4().hex}"
        self.ready_file = self.path
        self._task: asyncio.Task[None] | None = None

    def attach(self, child: ChildHandle, signal: StartupSignal) -> None:
        self._task = asyncio.get_running_loop().create_task(self._poll(signal, self._mtime()))
        signal.add_done_callback(self.close)

    async def _poll(self, signal: StartupSignal, previous: int | None) -> None:
        while signal.pending:
            await asyncio.sleep(self.interval)
            current = self._mtime()
            if current is not None and current != previous:
                logger.debug("Ready file modified", path=str(self.path))
                signal.resolve()
                return

    def _mtime(self) -> int | None:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def close(self) -> None:
        super().close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove ready file", path=str(self.path), error=str(e))
