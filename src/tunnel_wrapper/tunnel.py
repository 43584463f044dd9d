"""Tunnel lifecycle state machine.

A :class:`Tunnel` composes the installer, the process supervisor and a
vendor :class:`~tunnel_wrapper.strategy.TunnelStrategy` behind two
operations::

    tunnel = Tunnel(config, strategy)
    tunnel.on("status", lambda event: print(event.message))
    await tunnel.start()
    ...
    exit_code = await tunnel.stop()

State only moves ``stopped -> starting -> running -> stopping -> stopped``,
with ``starting -> stopped`` when a start fails or is cancelled. All state
changes happen on the event loop that called :meth:`Tunnel.start`.
"""

import asyncio
import os
from collections.abc import Callable
from enum import Enum
from functools import partial
from types import TracebackType
from typing import Any

from .catalog import EnvironmentCatalog, NormalizedEnvironment
from .common.events import EventChannel, EventType, Handle, OutputEvent, StatusEvent, remove_all
from .common.exceptions import (
    ConfigurationError,
    ConflictingOperationError,
    NotRunningError,
    StartupTimeoutError,
)
from .common.logging import get_logger
from .common.utils import mask_args
from .config import TunnelConfig
from .installer import DownloadDescriptor, Installer
from .jobs import JobState
from .process import ChildHandle, ProcessSupervisor
from .readiness import LineBuffer, ReadinessDetector
from .strategy import StatusFilter, TunnelStrategy

logger = get_logger(__name__)


class TunnelState(str, Enum):
    """Lifecycle state of a tunnel."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Tunnel:
    """Supervises one vendor tunnel executable."""

    def __init__(
        self,
        config: TunnelConfig | None = None,
        strategy: TunnelStrategy | None = None,
        *,
        installer: Installer | None = None,
        supervisor: ProcessSupervisor | None = None,
        catalog: EnvironmentCatalog | None = None,
    ):
        """Initialize Tunnel.

        Args:
            config: Immutable tunnel configuration
            strategy: Vendor behaviour; the default treats any output as ready
            installer: Artifact installer
            supervisor: Process supervisor
            catalog: Environment listing client
        """
        self.config = config if config is not None else TunnelConfig()
        self.strategy = strategy if strategy is not None else TunnelStrategy()
        self.events = EventChannel()
        self._installer = installer or Installer()
        self._supervisor = supervisor or ProcessSupervisor()
        self._catalog = catalog or EnvironmentCatalog(proxy=self.config.proxy)

        self._state = TunnelState.STOPPED
        self._child: ChildHandle | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Task[int | None] | None = None
        self._handles: list[Handle] = []

        logger.debug(
            "Tunnel initialized",
            executable=self.config.executable,
            directory=str(self.config.directory),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.config.executable!r} state={self._state.value}>"

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is TunnelState.RUNNING

    @property
    def is_starting(self) -> bool:
        return self._state is TunnelState.STARTING

    @property
    def is_stopping(self) -> bool:
        return self._state is TunnelState.STOPPING

    @property
    def child(self) -> ChildHandle | None:
        """The supervised process, while one exists."""
        return self._child

    @property
    def pid(self) -> int | None:
        return self._child.pid if self._child is not None else None

    @property
    def client_url(self) -> str:
        return self.config.client_url

    @property
    def extra_capabilities(self) -> dict[str, Any]:
        """Capabilities to add to WebDriver sessions that use this tunnel."""
        return self.strategy.capabilities(self.config)

    @property
    def is_downloaded(self) -> bool:
        path = self.config.installed_path
        return path is not None and path.exists()

    def on(self, event_type: EventType | str, listener: Callable[[Any], None]) -> Handle:
        """Listen for tunnel events (``status``, ``stdout``, ``stderr``,
        ``downloadprogress``, ``postdownload``)."""
        return self.events.on(event_type, listener)

    @property
    def download_descriptor(self) -> DownloadDescriptor | None:
        artifact = self.config.artifact_path or self.config.executable
        if self.config.url is None or artifact is None:
            return None
        return DownloadDescriptor(
            url=self.config.url,
            directory=self.config.directory,
            artifact_path=artifact,
            proxy=self.config.proxy,
            extract=self.config.extract,
        )

    async def download(self, force: bool = False) -> None:
        """Download and install the tunnel software unless already present."""
        descriptor = self.download_descriptor
        if descriptor is None:
            logger.debug("No artifact URL configured, skipping download")
            return
        await self._installer.ensure_installed(descriptor, force=force, events=self.events)

    def start(self) -> "asyncio.Task[None]":
        """Start the tunnel, downloading it first if necessary.

        Must be called from a running event loop. While starting or running
        the same task is returned again; no second process is spawned.

        Returns:
            Cancellable task that completes once the tunnel is ready

        Raises:
            ConflictingOperationError: If the previous tunnel is still stopping
        """
        if self._state is TunnelState.STOPPING:
            raise ConflictingOperationError("Previous tunnel is still terminating")
        if self._start_task is not None:
            return self._start_task

        self._state = TunnelState.STARTING
        self._start_task = asyncio.get_running_loop().create_task(self._run_start())
        return self._start_task

    def stop(self) -> "asyncio.Future[int | None]":
        """Stop the tunnel.

        A running tunnel is signalled and awaited; a starting tunnel has its
        start cancelled instead. Repeated calls while stopping share the same
        shutdown, which runs to completion even if the caller is cancelled.

        Returns:
            Awaitable resolving to the process exit code (None if a start was
            cancelled before any process was spawned)

        Raises:
            NotRunningError: If the tunnel is stopped
        """
        if self._stop_task is None:
            if self._state is TunnelState.STOPPED:
                raise NotRunningError("Tunnel is not running")

            loop = asyncio.get_running_loop()
            if self._state is TunnelState.STARTING:
                self._stop_task = loop.create_task(self._cancel_start())
            else:
                child = self._child
                if child is None:
                    raise NotRunningError("Tunnel has no process")
                self._state = TunnelState.STOPPING
                self._stop_task = loop.create_task(self._run_stop(child))

        return asyncio.shield(self._stop_task)

    async def send_job_state(self, job_id: str, state: JobState | dict[str, Any]) -> None:
        """Report job state through the vendor's job state reporter.

        Raises:
            JobStateError: If the vendor rejects the update or has no job API
        """
        if not isinstance(state, JobState):
            state = JobState.model_validate(state)
        await self.strategy.job_state_reporter.send(job_id, state, self.config)

    async def get_environments(self) -> list[NormalizedEnvironment]:
        """List the environments the vendor supports ([] without an environment URL)."""
        if not self.config.environment_url:
            return []
        return await self._catalog.fetch_environments(
            self.config.environment_url,
            self.config.credentials,
            self.strategy.normalize_environment,
        )

    async def __aenter__(self) -> "Tunnel":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._state is not TunnelState.STOPPED:
            await self.stop()

    async def _run_start(self) -> None:
        detector: ReadinessDetector | None = None
        try:
            await self.download()
            detector = self.strategy.create_detector(self.config)
            child = await self._spawn(detector)
            await self._wait_until_ready(child)
        except asyncio.CancelledError:
            logger.info("Tunnel start cancelled")
            await asyncio.shield(self._abort_start("Start cancelled"))
            raise
        except Exception as e:
            logger.error("Tunnel failed to start", error=str(e), error_type=type(e).__name__)
            await asyncio.shield(self._abort_start("Failed to start tunnel"))
            raise
        finally:
            if detector is not None:
                detector.close()

        self._state = TunnelState.RUNNING
        logger.info("Tunnel ready", pid=self.pid, client_url=self.client_url)
        self._emit_status("Ready")

    async def _spawn(self, detector: ReadinessDetector) -> ChildHandle:
        command = self._resolve_executable()
        args = [*self.strategy.build_args(self.config, detector.ready_file), *self.config.args]
        directory = self.config.directory

        logger.info(
            "Spawning tunnel",
            command=command,
            args=mask_args(args, [self.config.access_key]),
        )
        child = await self._supervisor.spawn(
            command,
            args,
            cwd=directory if directory.is_dir() else None,
            env=self._environment(),
        )

        self._child = child
        self._handles = [
            child.stdout.subscribe(partial(self._forward, EventType.STDOUT)),
            child.stderr.subscribe(partial(self._forward, EventType.STDERR)),
        ]
        if self.strategy.create_status_filter is not None:
            status_filter = self.strategy.create_status_filter()
            stream = child.stream(self.strategy.status_stream)
            self._handles.append(
                stream.subscribe(partial(self._read_status, LineBuffer(), status_filter))
            )
        child.exited.add_done_callback(partial(self._on_child_exit, child))

        detector.attach(child, child.startup)
        return child

    async def _wait_until_ready(self, child: ChildHandle) -> None:
        timeout = self.config.startup_timeout
        if timeout is None:
            await child.startup.wait()
            return
        try:
            await asyncio.wait_for(child.startup.wait(), timeout=timeout)
        except TimeoutError as e:
            raise StartupTimeoutError(
                f"Tunnel did not become ready within {timeout} seconds"
            ) from e

    async def _abort_start(self, message: str) -> None:
        child = self._child
        if child is not None:
            try:
                await self._supervisor.terminate(
                    child, self.config.stop_signal, self.config.stop_grace_period
                )
            except Exception as e:
                logger.error("Failed to terminate tunnel process", pid=child.pid, error=str(e))
            await self._release_child()

        self._state = TunnelState.STOPPED
        self._start_task = None
        self._emit_status(message)

    async def _cancel_start(self) -> int | None:
        task = self._start_task
        child = self._child
        try:
            if task is not None and not task.done():
                task.cancel()
                await asyncio.wait([task])
            # a task cancelled before its first step never runs its cleanup
            if self._state is TunnelState.STARTING:
                await self._abort_start("Start cancelled")
        finally:
            self._stop_task = None
        return child.returncode if child is not None else None

    async def _run_stop(self, child: ChildHandle) -> int:
        try:
            exit_code = await self._supervisor.terminate(
                child, self.config.stop_signal, self.config.stop_grace_period
            )
            await self._release_child()
        except Exception as e:
            logger.error("Failed to stop tunnel", pid=child.pid, error=str(e))
            self._state = TunnelState.RUNNING
            self._emit_status("Failed to stop tunnel")
            raise
        finally:
            self._stop_task = None

        self._start_task = None
        self._state = TunnelState.STOPPED
        logger.info("Tunnel stopped", exit_code=exit_code)
        self._emit_status("Stopped")
        return exit_code

    async def _release_child(self) -> None:
        child = self._child
        if child is not None and child.returncode is not None:
            # forward what the process wrote before exiting
            await child.drain()
        remove_all(self._handles)
        self._child = None

    def _resolve_executable(self) -> str:
        executable = self.config.executable
        if not executable:
            raise ConfigurationError("No tunnel executable configured")
        local = self.config.directory / executable
        if local.is_file():
            return str(local)
        return executable

    def _environment(self) -> dict[str, str]:
        return {
            **os.environ,
            **self.strategy.build_environment(self.config),
            **self.config.environment,
        }

    def _forward(self, event_type: EventType, chunk: str) -> None:
        self.events.emit(event_type, OutputEvent(data=chunk))

    def _read_status(self, buffer: LineBuffer, status_filter: StatusFilter, chunk: str) -> None:
        for line in buffer.feed(chunk):
            message = status_filter(line.strip())
            if message:
                self._emit_status(message)

    def _on_child_exit(self, child: ChildHandle, exited: "asyncio.Future[int]") -> None:
        if exited.cancelled() or child is not self._child:
            return
        if self._state is TunnelState.RUNNING:
            exit_code = exited.result()
            logger.warning("Tunnel process exited unexpectedly", pid=child.pid, exit_code=exit_code)
            self._emit_status(f"Tunnel exited with code {exit_code}")

    def _emit_status(self, message: str) -> None:
        self.events.emit(EventType.STATUS, StatusEvent(message=message))
