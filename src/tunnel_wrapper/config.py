"""Immutable tunnel configuration."""

import signal
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.http import Credentials


class TunnelConfig(BaseModel):
    """Configuration shared by every tunnel vendor.

    Instances are frozen. Vendors subclass this model to change field
    defaults, and caller overrides are merged by ordinary validation::

        config = BrowserStackConfig(port=4445, verbose=True)
        debug_config = config.with_overrides(verbose=False)
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    executable: str | None = Field(
        default=None,
        description="Executable to spawn, relative to directory or looked up on PATH",
    )
    artifact_path: str | None = Field(
        default=None,
        description="Path relative to directory whose existence means installed (defaults to executable)",
    )
    directory: Path = Field(default_factory=Path.cwd, description="Install and working directory")
    url: str | None = Field(default=None, description="Artifact download URL")
    extract: bool = Field(default=True, description="Unpack the artifact instead of writing it as-is")
    args: tuple[str, ...] = Field(default=(), description="Extra arguments appended to the vendor's")
    environment: dict[str, str] = Field(default_factory=dict, description="Variables added to os.environ")
    proxy: str | None = Field(default=None, description="Proxy URL for downloads and the tunnel")
    verbose: bool = False

    startup_timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait for readiness; None waits forever"
    )
    stop_signal: signal.Signals = Field(default=signal.SIGINT, description="First signal sent on stop")
    stop_grace_period: float = Field(
        default=5.0, ge=0, description="Seconds to wait after stop_signal before killing"
    )

    hostname: str = "localhost"
    port: int = Field(default=4444, ge=1, le=65535)
    protocol: str = "http"
    pathname: str = "/wd/hub/"

    username: str | None = None
    access_key: str | None = None
    tunnel_id: str | None = None
    environment_url: str | None = None

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: Path) -> Path:
        """Anchor relative directories at the current working directory."""
        return v.expanduser().absolute()

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        protocol = v.lower().rstrip(":/")
        if not protocol:
            raise ValueError("Protocol cannot be empty")
        return protocol

    @property
    def client_url(self) -> str:
        """URL a WebDriver client should use to reach the tunnelled service."""
        pathname = self.pathname if self.pathname.startswith("/") else f"/{self.pathname}"
        return f"{self.protocol}://{self.hostname}:{self.port}{pathname}"

    @property
    def installed_path(self) -> Path | None:
        """File whose presence marks the artifact as installed."""
        relative = self.artifact_path or self.executable
        if relative is None:
            return None
        return self.directory / relative

    @property
    def credentials(self) -> Credentials | None:
        if self.username and self.access_key:
            return (self.username, self.access_key)
        return None

    def with_overrides(self, **changes: Any) -> Self:
        """Return a validated copy with some fields replaced.

        Raises:
            pydantic.ValidationError: If a changed value is invalid
        """
        return type(self).model_validate({**self.model_dump(), **changes})
