"""
Defines project-specific exception classes.
"""
from typing import Optional


class AuditError(Exception):
    """Base class for all custom exceptions in the audit pipeline."""
    pass


class ConfigurationError(AuditError):
    """Raised when audit configuration is invalid or a sink kind is unknown."""
    pass


class DeliveryError(AuditError):
    """
    Raised inside a sink when a batch or message cannot be handed to its
    destination. Sinks recover from it locally.
    """

    def __init__(self,
                 message: str,
                 sink_type: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.sink_type = sink_type
        self.status_code = status_code

        full_msg = "Audit delivery failed"
        if sink_type:
            full_msg += f" (sink: {sink_type})"
        full_msg += f": {message}"
        super().__init__(full_msg)


class ProtocolStateError(AuditError):
    """
    Raised when a destination rejects a write because the client-side
    sequence token is stale. Carries the token the server expects next.
    """

    def __init__(self, message: str, expected_token: Optional[str] = None):
        self.expected_token = expected_token
        super().__init__(message)


class CapabilityUnavailableError(AuditError):
    """Raised when an optional client library needed by a sink is missing."""

    def __init__(self, package: str, sink_type: str):
        self.package = package
        self.sink_type = sink_type
        super().__init__(
            f"Audit sink '{sink_type}' requires the '{package}' package "
            "to be installed.")
