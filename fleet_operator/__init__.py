"""
Fleet Operator

Renders the resources of the security and observability components running
in a cluster, keeps their TLS material and trust bundles current and
reconciles the cluster towards the rendered state.
"""

__version__ = "1.0.0"

# Core libraries
from .core import ConfigManager, OperatorSettings, InMemoryClusterClient, KubernetesClusterClient
from .core.exceptions import (
    FleetOperatorError, InputNotReadyError, ConfigurationInvalidError, ApplyError,
    AuthorityProvisioningError, MissingAuthorityError
)

# Certificate libraries
from .certs import CertificateManager, TrustedBundle, KeyPair, Certificate

# Render, reconcile and controller libraries
from .render import RenderResult, render
from .reconcile import ComponentHandler
from .controllers import ClusterConnectionController, DPIController, ReconcileOutcome, WorkQueue

__all__ = [
    # Core
    'ConfigManager',
    'OperatorSettings',
    'InMemoryClusterClient',
    'KubernetesClusterClient',
    'FleetOperatorError',
    'InputNotReadyError',
    'ConfigurationInvalidError',
    'ApplyError',
    'AuthorityProvisioningError',
    'MissingAuthorityError',
    # Certificates
    'CertificateManager',
    'TrustedBundle',
    'KeyPair',
    'Certificate',
    # Pipeline
    'RenderResult',
    'render',
    'ComponentHandler',
    'ClusterConnectionController',
    'DPIController',
    'ReconcileOutcome',
    'WorkQueue'
]
