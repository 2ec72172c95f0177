"""Custom exceptions for kubeadm bootstrap."""


class BootstrapError(Exception):
    """Base exception for all bootstrap errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class CommandError(BootstrapError):
    """Exception raised when an external command fails."""

    def __init__(
        self,
        message: str,
        details: str = None,
        command: list[str] | None = None,
        returncode: int | None = None,
    ):
        self.command = command or []
        self.returncode = returncode
        super().__init__(message, details)


class KubernetesError(BootstrapError):
    """Exception raised for Kubernetes API errors."""

    pass


class ConfigurationError(BootstrapError):
    """Exception raised for invalid configuration values."""

    pass


class NetworkLookupError(BootstrapError):
    """Exception raised when an address cannot be determined."""

    pass


class ReadinessTimeoutError(BootstrapError):
    """Exception raised when a workload does not become ready in time."""

    pass


class StepFailedError(BootstrapError):
    """Exception raised when a named procedure step fails."""

    def __init__(self, step: str, cause: BootstrapError):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause.message}", cause.details)
