"""TestingBot tunnel, a Java application started with ``java -jar``."""

import json
import os
from pathlib import Path
from typing import Any

import httpx
from pydantic import Field

from ..catalog import NormalizedEnvironment
from ..common.exceptions import ConfigurationError, JobStateError
from ..common.utils import parse_proxy
from ..config import TunnelConfig
from ..jobs import JobState, RestJobStateReporter
from ..readiness import ReadinessDetector, SentinelFileDetector
from ..strategy import StatusFilter, TunnelStrategy
from ..tunnel import Tunnel

DOWNLOAD_URL = "https://testingbot.com/downloads/testingbot-tunnel.zip"
ENVIRONMENT_URL = "https://api.testingbot.com/v1/browsers"
JOB_STATE_URL = "https://api.testingbot.com/v1/tests/{job_id}"
JAR_PATH = "testingbot-tunnel/testingbot-tunnel.jar"

BROWSER_MAP = {
    "googlechrome": "chrome",
    "iexplore": "internet explorer",
}


class TestingBotConfig(TunnelConfig):
    """TestingBot defaults.

    ``username`` and ``access_key`` hold the API key and secret, read from
    ``TESTINGBOT_KEY`` and ``TESTINGBOT_SECRET``.
    """

    directory: Path = Field(default_factory=lambda: Path.cwd() / "testingbot")
    executable: str | None = "java"
    artifact_path: str | None = JAR_PATH
    url: str | None = DOWNLOAD_URL
    environment_url: str | None = ENVIRONMENT_URL
    port: int = Field(default=4445, ge=1, le=65535)
    username: str | None = Field(default_factory=lambda: os.environ.get("TESTINGBOT_KEY"))
    access_key: str | None = Field(default_factory=lambda: os.environ.get("TESTINGBOT_SECRET"))

    fast_fail_domains: tuple[str, ...] = Field(
        default=(), description="Domains whose connections from the VM fail immediately"
    )
    log_file: str | None = Field(default=None, description="File for the tunnel's own logs")
    use_jetty_proxy: bool = True
    use_squid_proxy: bool = True
    use_compression: bool = False
    use_ssl: bool = Field(default=False, description="Re-encrypt self-signed certificate traffic")


def build_args(config: TunnelConfig, ready_file: Path | None) -> list[str]:
    if not isinstance(config, TestingBotConfig):
        raise ConfigurationError(
            f"TestingBot tunnels need a TestingBotConfig, got {type(config).__name__}"
        )
    args = ["-jar", JAR_PATH, config.username or "", config.access_key or "", "-P", str(config.port)]

    if ready_file is not None:
        args.extend(["-f", str(ready_file)])
    if config.fast_fail_domains:
        args.extend(["-F", ",".join(config.fast_fail_domains)])
    if config.log_file:
        args.extend(["-l", config.log_file])
    if not config.use_jetty_proxy:
        args.append("-x")
    if not config.use_squid_proxy:
        args.append("-q")
    if config.use_compression:
        args.append("-b")
    if config.use_ssl:
        args.append("-s")
    if config.verbose:
        args.append("-d")

    # JVM options must precede -jar
    proxy = parse_proxy(config.proxy)
    if proxy is not None:
        jvm_options = []
        if proxy.hostname:
            jvm_options.append(f"-Dhttp.proxyHost={proxy.hostname}")
        if proxy.port:
            jvm_options.append(f"-Dhttp.proxyPort={proxy.port}")
        args = jvm_options + args

    return args


def create_detector(config: TunnelConfig) -> ReadinessDetector:
    return SentinelFileDetector("testingbot")


def create_status_filter() -> StatusFilter:
    """Narrate ``INFO:`` lines, skipping traffic dumps and the repeats the
    tunnel prints while a connection is pending."""
    last_message: str | None = None

    def status_filter(line: str) -> str | None:
        nonlocal last_message
        if not line.startswith("INFO: "):
            return None
        message = line[len("INFO: "):]
        if message == last_message or ">> [" in message or "<< [" in message:
            return None
        last_message = message
        return message

    return status_filter


def normalize_environment(entry: dict[str, Any]) -> NormalizedEnvironment:
    """Map a TestingBot browser entry such as::

        {"selenium_name": "Chrome36", "name": "googlechrome",
         "platform": "CAPITAN", "version": "36"}
    """
    name = entry.get("name") or ""
    version = entry.get("version")
    return NormalizedEnvironment(
        browser_name=BROWSER_MAP.get(name, name),
        platform=entry.get("platform"),
        version=str(version) if version is not None else None,
        descriptor=entry,
    )


def job_state_payload(state: JobState) -> dict[str, Any]:
    payload: dict[str, Any] = {"test[success]": 1 if state.success else 0}
    if state.status:
        payload["test[status_message]"] = state.status
    if state.name:
        payload["test[name]"] = state.name
    if state.extra:
        payload["test[extra]"] = json.dumps(state.extra)
    if state.tags:
        payload["groups"] = ",".join(state.tags)
    return payload


def check_job_response(response: httpx.Response) -> None:
    """TestingBot answers with a JSON body carrying ``success`` or ``error``."""
    if not response.content:
        raise JobStateError(f"Server reported {response.status_code} with no other data.")
    try:
        data = response.json()
    except ValueError as e:
        raise JobStateError(f"Server reported {response.status_code} with: {response.text}") from e
    if not isinstance(data, dict):
        raise JobStateError(f"Server reported {response.status_code} with: {response.text}")

    if data.get("error"):
        raise JobStateError(data["error"])
    if not data.get("success"):
        raise JobStateError("Job data failed to save.")
    if response.status_code != 200:
        raise JobStateError(f"Server reported {response.status_code} with: {response.text}")


def strategy() -> TunnelStrategy:
    return TunnelStrategy(
        build_args=build_args,
        create_detector=create_detector,
        normalize_environment=normalize_environment,
        job_state_reporter=RestJobStateReporter(
            JOB_STATE_URL, job_state_payload, encoding="form", check=check_job_response
        ),
        create_status_filter=create_status_filter,
        status_stream="stderr",
    )


def create_tunnel(config: TestingBotConfig | None = None, **overrides: Any) -> Tunnel:
    """Create a TestingBot tunnel.

    Args:
        config: Base configuration; defaults to ``TestingBotConfig()``
        **overrides: Field values replacing those of the base configuration

    Returns:
        A stopped tunnel
    """
    if config is None:
        config = TestingBotConfig(**overrides)
    elif overrides:
        config = config.with_overrides(**overrides)
    return Tunnel(config, strategy())
