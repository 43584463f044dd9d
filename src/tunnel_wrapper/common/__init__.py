"""Common utilities and shared functionality."""

from .events import (
    DownloadProgressEvent,
    EventChannel,
    EventType,
    Handle,
    Observable,
    OutputEvent,
    PostDownloadEvent,
    StatusEvent,
)
from .exceptions import (
    CatalogUnavailableError,
    ConfigurationError,
    ConflictingOperationError,
    DownloadFailedError,
    ExtractFailedError,
    InstallError,
    JobStateError,
    JobStateNotSupportedError,
    NotRunningError,
    PrematureExitError,
    ProcessError,
    SpawnFailedError,
    StartupDetectedFailure,
    StartupError,
    StartupTimeoutError,
    TunnelWrapperError,
    UnsupportedPlatformError,
)
from .http import create_client
from .logging import get_logger, setup_logging
from .utils import (
    ProxySettings,
    SystemInfo,
    get_system_info,
    mask_args,
    mask_sensitive_data,
    parse_proxy,
)

__all__ = [
    # Events
    "EventChannel",
    "EventType",
    "Handle",
    "Observable",
    "DownloadProgressEvent",
    "PostDownloadEvent",
    "OutputEvent",
    "StatusEvent",
    # Exceptions
    "TunnelWrapperError",
    "ConfigurationError",
    "UnsupportedPlatformError",
    "InstallError",
    "DownloadFailedError",
    "ExtractFailedError",
    "ProcessError",
    "SpawnFailedError",
    "StartupError",
    "StartupDetectedFailure",
    "PrematureExitError",
    "StartupTimeoutError",
    "ConflictingOperationError",
    "NotRunningError",
    "CatalogUnavailableError",
    "JobStateError",
    "JobStateNotSupportedError",
    # HTTP
    "create_client",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "SystemInfo",
    "ProxySettings",
    "get_system_info",
    "parse_proxy",
    "mask_sensitive_data",
    "mask_args",
]
