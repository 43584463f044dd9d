"""Custom exceptions for tunnel wrapper."""


class TunnelWrapperError(Exception):
    """Base exception for all tunnel wrapper errors."""

    pass


class ConfigurationError(TunnelWrapperError):
    """Raised when configuration is invalid."""

    pass


class UnsupportedPlatformError(ConfigurationError):
    """Raised when a vendor ships no tunnel binary for the current system."""

    pass


class InstallError(TunnelWrapperError):
    """Base class for artifact download and unpack failures."""

    pass


class DownloadFailedError(InstallError):
    """Raised when the download server answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str | None = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Download server returned status code {status_code}")


class ExtractFailedError(InstallError):
    """Raised when a downloaded artifact cannot be unpacked or written."""

    pass


class ProcessError(TunnelWrapperError):
    """Raised when tunnel process operations fail."""

    pass


class SpawnFailedError(ProcessError):
    """Raised when the OS refuses to launch the tunnel executable."""

    pass


class StartupError(ProcessError):
    """Base class for failures detected while a tunnel is starting."""

    pass


class StartupDetectedFailure(StartupError):
    """Raised when the tunnel itself reports an error during startup."""

    pass


class PrematureExitError(StartupError):
    """Raised when the tunnel process exits before it became ready."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class StartupTimeoutError(StartupError):
    """Raised when the tunnel does not become ready within the startup timeout."""

    pass


class ConflictingOperationError(TunnelWrapperError):
    """Raised when an operation is invalid for the tunnel's current state."""

    pass


class NotRunningError(ConflictingOperationError):
    """Raised when stopping a tunnel that is not running."""

    pass


class CatalogUnavailableError(TunnelWrapperError):
    """Raised when the environment listing cannot be retrieved."""

    def __init__(self, status_code: int | None, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"Server replied with a status of {status_code}")


class JobStateError(TunnelWrapperError):
    """Raised when the vendor rejects a job state update."""

    pass


class JobStateNotSupportedError(JobStateError):
    """Raised when the tunnel vendor has no job state API."""

    pass
