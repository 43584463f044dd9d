"""Shared pytest fixtures for tunnel wrapper tests."""

import sys
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from tunnel_wrapper.config import TunnelConfig
from tunnel_wrapper.process import ChildHandle, OutputStream, ProcessSupervisor
from tunnel_wrapper.strategy import TunnelStrategy
from tunnel_wrapper.tunnel import Tunnel

# Child scripts run with the current interpreter
READY_SCRIPT = """
import signal, sys, time
signal.signal(signal.SIGINT, lambda *args: sys.exit(0))
print("ready", flush=True)
while True:
    time.sleep(0.1)
"""

SILENT_SCRIPT = """
import signal, sys, time
signal.signal(signal.SIGINT, lambda *args: sys.exit(0))
while True:
    time.sleep(0.1)
"""

STUBBORN_SCRIPT = """
import signal, time
signal.signal(signal.SIGINT, signal.SIG_IGN)
print("ready", flush=True)
while True:
    time.sleep(0.1)
"""

LICENSE_EXPIRED_SCRIPT = """
import sys
sys.stderr.write("fatal: license expired\\n")
sys.exit(3)
"""

# Leaves a detached helper holding the inherited stdout and stderr pipes
FORKING_SCRIPT = """
import signal, subprocess, sys, time
helper = subprocess.Popen(["sleep", "30"], start_new_session=True)
signal.signal(signal.SIGINT, lambda *args: sys.exit(0))
print(f"helper {helper.pid} ready", flush=True)
while True:
    time.sleep(0.1)
"""


class FakeChild:
    """Stand-in for ChildHandle exposing only the output streams."""

    def __init__(self) -> None:
        self.stdout = OutputStream("stdout")
        self.stderr = OutputStream("stderr")

    def stream(self, name: str) -> OutputStream:
        return self.stdout if name == "stdout" else self.stderr


class CountingSupervisor(ProcessSupervisor):
    """ProcessSupervisor remembering every process it spawned."""

    def __init__(self) -> None:
        self.spawned: list[ChildHandle] = []

    async def spawn(self, command, args, **kwargs) -> ChildHandle:
        handle = await super().spawn(command, args, **kwargs)
        self.spawned.append(handle)
        return handle


@pytest.fixture
def scripts() -> SimpleNamespace:
    """Child process scripts: ready, silent, stubborn (ignores SIGINT),
    license_expired (fails on stderr) and forking (leaves a helper
    process holding its pipes)."""
    return SimpleNamespace(
        ready=READY_SCRIPT,
        silent=SILENT_SCRIPT,
        stubborn=STUBBORN_SCRIPT,
        license_expired=LICENSE_EXPIRED_SCRIPT,
        forking=FORKING_SCRIPT,
    )


@pytest.fixture
def fake_child() -> FakeChild:
    """Create a child with output streams but no process."""
    return FakeChild()


@pytest.fixture
def supervisor() -> CountingSupervisor:
    return CountingSupervisor()


@pytest.fixture
def python_config(tmp_path: Path) -> Callable[..., TunnelConfig]:
    """Factory for configs that run a Python script as the tunnel.

    Returns:
        Callable taking the script source and extra config fields
    """

    def make(script: str, **overrides) -> TunnelConfig:
        fields = {"stop_grace_period": 5.0, **overrides}
        return TunnelConfig(executable=sys.executable, args=("-c", script), directory=tmp_path, **fields)

    return make


@pytest.fixture
def make_tunnel(
    python_config: Callable[..., TunnelConfig], supervisor: CountingSupervisor
) -> Callable[..., Tunnel]:
    """Factory for tunnels supervising a Python script.

    Returns:
        Callable taking the script source, an optional strategy and config fields
    """

    def make(script: str, strategy: TunnelStrategy | None = None, **overrides) -> Tunnel:
        return Tunnel(python_config(script, **overrides), strategy, supervisor=supervisor)

    return make


@pytest.fixture
def statuses() -> Callable[[Tunnel], list[str]]:
    """Record status messages of a tunnel.

    Returns:
        Callable attaching to a tunnel and returning the live list of messages
    """

    def record(tunnel: Tunnel) -> list[str]:
        messages: list[str] = []
        tunnel.on("status", lambda event: messages.append(event.message))
        return messages

    return record

