"""Process supervision for tunnel executables."""

import asyncio
import codecs
import signal
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from .common.events import Handle, Observable
from .common.exceptions import PrematureExitError, SpawnFailedError
from .common.logging import get_logger
from .readiness import StartupSignal, StreamName

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024
PIPE_DRAIN_TIMEOUT = 2.0


class OutputStream:
    """Decoded text output of one child pipe, fanned out to subscribers in order."""

    def __init__(self, name: StreamName):
        self.name = name
        self._observers: Observable[str] = Observable()
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def listener_count(self) -> int:
        return len(self._observers)

    def subscribe(self, listener: Callable[[str], None]) -> Handle:
        return self._observers.subscribe(listener)

    def publish(self, text: str) -> None:
        self._observers.publish(text)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def pump(self, reader: asyncio.StreamReader | None) -> None:
        """Read the pipe until EOF, publishing UTF-8 text as it arrives."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            if reader is None:
                return
            while chunk := await reader.read(READ_CHUNK_SIZE):
                text = decoder.decode(chunk)
                if text:
                    self.publish(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                self.publish(tail)
        finally:
            self._closed.set()


class ChildHandle:
    """A spawned tunnel process with its output streams and startup signal."""

    def __init__(self, process: asyncio.subprocess.Process, command: str, args: Sequence[str]):
        self.process = process
        self.command = command
        self.args = list(args)
        self.stdout = OutputStream("stdout")
        self.stderr = OutputStream("stderr")
        self.startup = StartupSignal()
        self.exited: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._stderr_buffer: list[str] = []
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def stderr_text(self) -> str:
        """Stderr captured before the startup signal settled."""
        return "".join(self._stderr_buffer)

    def stream(self, name: StreamName) -> OutputStream:
        if name == "stdout":
            return self.stdout
        if name == "stderr":
            return self.stderr
        raise ValueError(f"Unknown stream: {name}")

    def send_signal(self, sig: int) -> bool:
        """Send a signal unless the process has already exited.

        Returns:
            True if the signal was delivered
        """
        if self.returncode is not None:
            return False
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            return False
        return True

    def kill(self) -> None:
        if self.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    async def wait(self) -> int:
        """Wait for exit and return the exit code; cancelling the caller does not
        cancel the underlying exit watcher."""
        return await asyncio.shield(self.exited)

    async def drain(
        self, streams: Sequence[StreamName] = ("stdout", "stderr"), timeout: float = PIPE_DRAIN_TIMEOUT
    ) -> bool:
        """Wait until the given pipes reach EOF.

        A detached helper that inherited the pipes can keep them open after
        the process itself exited, so the wait is bounded.

        Returns:
            False if a pipe was still open after ``timeout`` seconds
        """
        waiters = [self.stream(name).wait_closed() for name in streams]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=timeout)
        except TimeoutError:
            logger.warning("Tunnel output still open after exit", pid=self.pid, timeout=timeout)
            return False
        return True


class ProcessSupervisor:
    """Spawns tunnel processes and terminates them."""

    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ChildHandle:
        """Launch a process with piped, UTF-8 decoded stdout and stderr.

        The returned handle's startup signal is rejected with
        :class:`PrematureExitError` if the process exits while the signal is
        still pending. The error carries the stderr read up to EOF, or up to
        ``PIPE_DRAIN_TIMEOUT`` seconds after the exit when a surviving
        helper process keeps the pipe open. ``exited`` resolves as soon as
        the process itself is gone.

        Raises:
            SpawnFailedError: If the OS refuses to launch the process
        """
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=dict(env) if env is not None else None,
            )
        except OSError as e:
            logger.error("Failed to start tunnel process", command=command, error=str(e))
            raise SpawnFailedError(f"Failed to start tunnel process {command}: {e}") from e

        handle = ChildHandle(process, command, args)
        buffer_handle = handle.stderr.subscribe(handle._stderr_buffer.append)
        handle.startup.add_done_callback(buffer_handle.remove)

        loop = asyncio.get_running_loop()
        handle._tasks = [
            loop.create_task(handle.stdout.pump(process.stdout)),
            loop.create_task(handle.stderr.pump(process.stderr)),
            loop.create_task(self._watch_exit(handle)),
        ]
        logger.info("Tunnel process spawned", pid=process.pid, command=command)
        return handle

    async def _watch_exit(self, handle: ChildHandle) -> None:
        exit_code = await handle.process.wait()
        if not handle.exited.done():
            handle.exited.set_result(exit_code)
        logger.debug("Tunnel process exited", pid=handle.pid, exit_code=exit_code)

        if not handle.startup.pending:
            return

        # stderr may still hold unread data when the exit is reported
        await handle.drain(("stderr",))
        if handle.startup.pending:
            stderr = handle.stderr_text
            detail = stderr.strip() or f"Exit code: {exit_code}"
            handle.startup.reject(
                PrematureExitError(
                    f"Tunnel failed to start: {detail}", exit_code=exit_code, stderr=stderr
                )
            )

    async def terminate(
        self,
        handle: ChildHandle,
        sig: int = signal.SIGINT,
        grace_period: float = 5.0,
    ) -> int:
        """Signal the process and wait for it to exit.

        If it is still alive after ``grace_period`` seconds it is killed. The
        escalation is best-effort: a vendor binary that forks a detached helper
        may leave that helper behind.

        Returns:
            The process exit code
        """
        if handle.send_signal(sig):
            logger.info("Stopping tunnel process", pid=handle.pid, signal=signal.Signals(sig).name)
            try:
                return await asyncio.wait_for(handle.wait(), timeout=grace_period)
            except TimeoutError:
                logger.warning(
                    "Tunnel did not exit within grace period, force killing",
                    pid=handle.pid,
                    grace_period=grace_period,
                )
                handle.kill()
        return await handle.wait()
