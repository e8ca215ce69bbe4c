"""
Exceptions Module

Exception hierarchy shared by the certificate, render, reconcile and
controller libraries.
"""

from dataclasses import dataclass
from typing import Any, List, Optional


class FleetOperatorError(Exception):
    """Base exception for all fleet operator errors"""


class ConfigurationError(FleetOperatorError):
    """Raised when the operator settings file is missing or invalid"""


class AuthenticationError(FleetOperatorError):
    """Raised when the cluster client cannot be configured"""


class InputNotReadyError(FleetOperatorError):
    """
    Raised when a prerequisite resource, secret or license is absent.

    Recoverable: the controller reports the feature as degraded and asks
    for a bounded-delay retry.
    """

    def __init__(self, reason: str, retry_after: Optional[float] = None):
        super().__init__(reason)
        self.reason = reason
        self.retry_after = retry_after


class ConfigurationInvalidError(FleetOperatorError):
    """Raised when an assembled component configuration is internally inconsistent"""


class AuthorityProvisioningError(FleetOperatorError):
    """Raised when the root signing authority cannot be created or retrieved"""


class MissingAuthorityError(AuthorityProvisioningError):
    """Raised when a CA is required but none is configured"""


class ClusterApiError(FleetOperatorError):
    """Raised when the cluster API rejects or fails a request"""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(ClusterApiError):
    """Raised when the requested object does not exist"""

    def __init__(self, message: str):
        super().__init__(message, status=404, reason="NotFound")


class AlreadyExistsError(ClusterApiError):
    """Raised when creating an object whose identity is already taken"""

    def __init__(self, message: str):
        super().__init__(message, status=409, reason="AlreadyExists")


@dataclass(frozen=True)
class ApplyFailure:
    """A single failed create/update/delete within an apply batch"""

    identity: Any
    operation: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.operation} {self.identity}: {self.error}"


class ApplyError(FleetOperatorError):
    """
    Raised when one or more operations of an apply batch failed.

    The engine attempts every object in the batch before raising, so
    ``failures`` lists every operation that did not succeed.
    """

    def __init__(self, message: str, failures: List[ApplyFailure]):
        super().__init__(message)
        self.failures = failures

    def __str__(self) -> str:
        details = "; ".join(str(failure) for failure in self.failures)
        return f"{self.args[0]}: {details}" if details else self.args[0]
