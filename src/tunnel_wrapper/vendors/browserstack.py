"""BrowserStack Local tunnel."""

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import Field, model_validator

from ..catalog import NormalizedEnvironment
from ..common.exceptions import ConfigurationError, UnsupportedPlatformError
from ..common.utils import SystemInfo, get_system_info, parse_proxy
from ..config import TunnelConfig
from ..jobs import JobState, RestJobStateReporter
from ..readiness import OutputPatternDetector, ReadinessDetector
from ..strategy import StatusFilter, TunnelStrategy
from ..tunnel import Tunnel

DOWNLOAD_BASE_URL = "https://www.browserstack.com/browserstack-local/BrowserStackLocal-"
ENVIRONMENT_URL = "https://www.browserstack.com/automate/browsers.json"
JOB_STATE_URL = "https://www.browserstack.com/automate/sessions/{job_id}.json"

READY_MESSAGE = r"You can now access your local server\(s\) in our remote browser"
ERROR_MESSAGE = r"\*\*\* Error: (.*)$"
STATUS_PREFIXES = ("BrowserStackLocal v", "Connecting to BrowserStack", "Connected")

PLATFORM_MAP: dict[str, str | dict[str, str]] = {
    "Windows": {
        "10": "WINDOWS",
        "8.1": "WIN8",
        "8": "WIN8",
        "7": "WINDOWS",
        "XP": "XP",
    },
    "OS X": "MAC",
}
BROWSER_MAP = {"ie": "internet explorer"}


def download_url(system: SystemInfo) -> str:
    """Return the BrowserStackLocal archive URL for a platform.

    Raises:
        UnsupportedPlatformError: If BrowserStack ships no binary for it
    """
    if system.os == "darwin" and system.arch == "x64":
        suffix = f"{system.os}-{system.arch}"
    elif system.os == "win32":
        suffix = system.os
    elif system.os == "linux" and system.arch in ("ia32", "x64"):
        suffix = f"{system.os}-{system.arch}"
    else:
        raise UnsupportedPlatformError(f"{system.os} on {system.arch} is not supported")
    return f"{DOWNLOAD_BASE_URL}{suffix}.zip"


def _default_executable() -> str:
    return "BrowserStackLocal.exe" if get_system_info().os == "win32" else "BrowserStackLocal"


class BrowserStackConfig(TunnelConfig):
    """BrowserStack defaults; credentials come from ``BROWSERSTACK_USERNAME``
    and ``BROWSERSTACK_ACCESS_KEY``."""

    directory: Path = Field(default_factory=lambda: Path.cwd() / "browserstack")
    executable: str | None = Field(default_factory=_default_executable)
    environment_url: str | None = ENVIRONMENT_URL
    hostname: str = "hub.browserstack.com"
    port: int = Field(default=443, ge=1, le=65535)
    protocol: str = "https"
    username: str | None = Field(default_factory=lambda: os.environ.get("BROWSERSTACK_USERNAME"))
    access_key: str | None = Field(
        default_factory=lambda: os.environ.get("BROWSERSTACK_ACCESS_KEY")
    )

    servers: tuple[str, ...] = Field(
        default=(), description="Server URLs to proxy; only host, port and protocol are used"
    )
    automate_only: bool = Field(default=True, description="Start with WebDriver support only")
    force_local: bool = Field(default=False, description="Route all traffic via the local machine")
    kill_other_tunnels: bool = Field(
        default=False, description="Kill other tunnels running on the account"
    )
    skip_server_validation: bool = Field(
        default=True, description="Skip checking that proxied servers respond at startup"
    )

    @model_validator(mode="before")
    @classmethod
    def default_url(cls, data: Any) -> Any:
        """Pick the platform's archive unless a URL was given."""
        if isinstance(data, dict) and "url" not in data:
            data = {**data, "url": download_url(get_system_info())}
        return data


def _server_triple(server: str) -> str:
    parts = urlsplit(server if "://" in server else f"http://{server}")
    secure = parts.scheme == "https"
    port = parts.port or (443 if secure else 80)
    return f"{parts.hostname},{port},{1 if secure else 0}"


def build_args(config: TunnelConfig, ready_file: Path | None) -> list[str]:
    if not isinstance(config, BrowserStackConfig):
        raise ConfigurationError(
            f"BrowserStack tunnels need a BrowserStackConfig, got {type(config).__name__}"
        )
    args = [config.access_key or "", ",".join(_server_triple(s) for s in config.servers)]

    if config.automate_only:
        args.append("-onlyAutomate")
    if config.force_local:
        args.append("-forcelocal")
    if config.kill_other_tunnels:
        args.append("-force")
    if config.skip_server_validation:
        args.append("-skipCheck")
    if config.tunnel_id:
        args.extend(["-localIdentifier", config.tunnel_id])
    if config.verbose:
        args.append("-v")

    proxy = parse_proxy(config.proxy)
    if proxy is not None:
        if proxy.hostname:
            args.extend(["-proxyHost", proxy.hostname])
        if proxy.port:
            args.extend(["-proxyPort", str(proxy.port)])
        if proxy.username is not None:
            args.extend(["-proxyUser", proxy.username, "-proxyPass", proxy.password or ""])

    return args


def create_detector(config: TunnelConfig) -> ReadinessDetector:
    return OutputPatternDetector(
        READY_MESSAGE, ERROR_MESSAGE, error_format="The tunnel reported: {}"
    )


def create_status_filter() -> StatusFilter:
    def status_filter(line: str) -> str | None:
        return line if line.startswith(STATUS_PREFIXES) else None

    return status_filter


def normalize_environment(entry: dict[str, Any]) -> NormalizedEnvironment:
    """Map a BrowserStack browsers.json entry such as::

        {"browser": "ie", "os_version": "7", "browser_version": "11.0",
         "device": null, "os": "Windows"}
    """
    os_name = entry.get("os")
    os_version = entry.get("os_version")

    platform = PLATFORM_MAP.get(os_name, os_name) if os_name else None
    if isinstance(platform, dict):
        platform = platform.get(os_version) if os_version else None

    browser = entry.get("browser") or ""
    return NormalizedEnvironment(
        platform=platform,
        platform_name=os_name,
        platform_version=os_version,
        browser_name=BROWSER_MAP.get(browser, browser),
        browser_version=entry.get("browser_version"),
        version=entry.get("browser_version"),
        descriptor=entry,
    )


def job_state_payload(state: JobState) -> dict[str, Any]:
    return {"status": "completed" if state.success else "error"}


def capabilities(config: TunnelConfig) -> dict[str, Any]:
    extra: dict[str, Any] = {"browserstack.local": "true"}
    if config.tunnel_id:
        extra["browserstack.localIdentifier"] = config.tunnel_id
    return extra


def strategy() -> TunnelStrategy:
    return TunnelStrategy(
        build_args=build_args,
        create_detector=create_detector,
        normalize_environment=normalize_environment,
        job_state_reporter=RestJobStateReporter(JOB_STATE_URL, job_state_payload),
        create_status_filter=create_status_filter,
        capabilities=capabilities,
    )


def create_tunnel(config: BrowserStackConfig | None = None, **overrides: Any) -> Tunnel:
    """Create a BrowserStack tunnel.

    Args:
        config: Base configuration; defaults to ``BrowserStackConfig()``
        **overrides: Field values replacing those of the base configuration

    Returns:
        A stopped tunnel
    """
    if config is None:
        config = BrowserStackConfig(**overrides)
    elif overrides:
        config = config.with_overrides(**overrides)
    return Tunnel(config, strategy())
