"""
Core Libraries

Shared functionality and utilities for the fleet operator.
"""

from .client import ClusterAuth, ClusterClient, KubernetesClusterClient
from .config import ConfigManager, OperatorSettings
from .exceptions import (
    FleetOperatorError, ConfigurationError, AuthenticationError, InputNotReadyError,
    ConfigurationInvalidError, AuthorityProvisioningError, MissingAuthorityError,
    ClusterApiError, NotFoundError, AlreadyExistsError, ApplyFailure, ApplyError
)
from .memory import InMemoryClusterClient
from .utils import setup_logging, disable_ssl_warnings, redact_manifest

__all__ = [
    'ClusterAuth',
    'ClusterClient',
    'KubernetesClusterClient',
    'InMemoryClusterClient',
    'ConfigManager',
    'OperatorSettings',
    'FleetOperatorError',
    'ConfigurationError',
    'AuthenticationError',
    'InputNotReadyError',
    'ConfigurationInvalidError',
    'AuthorityProvisioningError',
    'MissingAuthorityError',
    'ClusterApiError',
    'NotFoundError',
    'AlreadyExistsError',
    'ApplyFailure',
    'ApplyError',
    'setup_logging',
    'disable_ssl_warnings',
    'redact_manifest'
]
