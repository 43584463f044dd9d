"""Tunnel Wrapper - supervise vendor tunnel executables for remote test clouds."""

from . import vendors

# Core lifecycle
from .catalog import EnvironmentCatalog, NormalizedEnvironment

# Common utilities
from .common.events import (
    DownloadProgressEvent,
    EventType,
    Handle,
    OutputEvent,
    PostDownloadEvent,
    StatusEvent,
)
from .common.exceptions import (
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
from .common.logging import get_logger, setup_logging
from .common.utils import mask_sensitive_data
from .config import TunnelConfig
from .installer import DownloadDescriptor, Installer
from .jobs import JobState, JobStateReporter, RestJobStateReporter
from .process import ChildHandle, ProcessSupervisor
from .readiness import (
    OutputPatternDetector,
    ReadinessDetector,
    SentinelFileDetector,
    StartupSignal,
)
from .strategy import TunnelStrategy
from .tunnel import Tunnel, TunnelState

# Vendors
from .vendors import BrowserStackConfig, TestingBotConfig
from .vendors.browserstack import create_tunnel as create_browserstack_tunnel
from .vendors.testingbot import create_tunnel as create_testingbot_tunnel

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Tunnel lifecycle
    "Tunnel",
    "TunnelState",
    "TunnelConfig",
    "TunnelStrategy",
    # Components
    "Installer",
    "DownloadDescriptor",
    "ProcessSupervisor",
    "ChildHandle",
    "StartupSignal",
    "ReadinessDetector",
    "OutputPatternDetector",
    "SentinelFileDetector",
    "EnvironmentCatalog",
    "NormalizedEnvironment",
    "JobState",
    "JobStateReporter",
    "RestJobStateReporter",
    # Events
    "EventType",
    "Handle",
    "DownloadProgressEvent",
    "PostDownloadEvent",
    "OutputEvent",
    "StatusEvent",
    # Vendors
    "BrowserStackConfig",
    "TestingBotConfig",
    "create_browserstack_tunnel",
    "create_testingbot_tunnel",
    "vendors",
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
    # Utilities
    "get_logger",
    "setup_logging",
    "mask_sensitive_data",
]
