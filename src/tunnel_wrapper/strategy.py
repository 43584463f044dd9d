"""Vendor strategy bundle plugged into the generic tunnel supervisor."""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .catalog import EnvironmentNormalizer, normalize_passthrough
from .config import TunnelConfig
from .jobs import JobStateReporter, UnsupportedJobStateReporter
from .readiness import ReadinessDetector, StreamName

ArgBuilder = Callable[[TunnelConfig, Path | None], list[str]]
DetectorFactory = Callable[[TunnelConfig], ReadinessDetector]
StatusFilter = Callable[[str], str | None]


def no_args(config: TunnelConfig, ready_file: Path | None) -> list[str]:
    return []


def first_output_detector(config: TunnelConfig) -> ReadinessDetector:
    return ReadinessDetector()


def no_environment(config: TunnelConfig) -> dict[str, str]:
    return {}


def no_capabilities(config: TunnelConfig) -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class TunnelStrategy:
    """Everything that differs between tunnel vendors.

    Attributes:
        build_args: Builds the argument vector from the config and the
            detector's ready file (None when the detector uses none)
        create_detector: Creates a fresh readiness detector per start
        normalize_environment: Maps a raw environment listing entry
        job_state_reporter: Sends job pass/fail state
        create_status_filter: Creates, per spawned process, a filter turning an
            output line into a status message (or None to skip the line);
            applied to ``status_stream`` for the child's lifetime
        status_stream: Stream fed to the status filter
        build_environment: Extra environment variables for the process
        capabilities: Extra WebDriver capabilities for sessions using the tunnel
    """

    build_args: ArgBuilder = no_args
    create_detector: DetectorFactory = first_output_detector
    normalize_environment: EnvironmentNormalizer = normalize_passthrough
    job_state_reporter: JobStateReporter = field(default_factory=UnsupportedJobStateReporter)
    create_status_filter: Callable[[], StatusFilter] | None = None
    status_stream: StreamName = "stdout"
    build_environment: Callable[[TunnelConfig], dict[str, str]] = no_environment
    capabilities: Callable[[TunnelConfig], dict[str, Any]] = no_capabilities
