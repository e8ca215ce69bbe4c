"""
Render Libraries

Pure renderers turning one feature configuration into the resources to
create and delete.
"""

from ..core.constants import ErrorMessages
from ..core.exceptions import ConfigurationInvalidError
from .base import Component, DependencyTier, ManifestTemplates, RenderResult, ResourceDescriptor, ResourceKey
from .certificate_management import CertificateManagementComponent, CertificateManagementConfiguration
from .common import InstallationSpec
from .dpi import DPIComponent, DPIConfiguration, TyphaNodeTLS
from .esgateway import EsGatewayComponent, EsGatewayConfiguration
from .guardian import GuardianComponent, GuardianConfiguration
from .passthrough import PassthroughComponent, PassthroughConfiguration

# Closed set of configuration variants and the renderer for each
RENDERERS = {
    DPIConfiguration: DPIComponent,
    EsGatewayConfiguration: EsGatewayComponent,
    GuardianConfiguration: GuardianComponent,
    CertificateManagementConfiguration: CertificateManagementComponent,
    PassthroughConfiguration: PassthroughComponent,
}


def component_for(config) -> Component:
    """
    Build the renderer for a configuration.

    Raises:
        ConfigurationInvalidError: If no renderer handles the configuration
            type, or the configuration is inconsistent
    """
    renderer = RENDERERS.get(type(config))
    if renderer is None:
        raise ConfigurationInvalidError(
            ErrorMessages.ConfigError.UNKNOWN_CONFIGURATION.format(type_name=type(config).__name__)
        )
    return renderer(config)


def render(config) -> RenderResult:
    """Render a configuration into the resources to create and delete"""
    return component_for(config).objects()


__all__ = [
    'Component',
    'DependencyTier',
    'ManifestTemplates',
    'RenderResult',
    'ResourceDescriptor',
    'ResourceKey',
    'InstallationSpec',
    'CertificateManagementComponent',
    'CertificateManagementConfiguration',
    'DPIComponent',
    'DPIConfiguration',
    'TyphaNodeTLS',
    'EsGatewayComponent',
    'EsGatewayConfiguration',
    'GuardianComponent',
    'GuardianConfiguration',
    'PassthroughComponent',
    'PassthroughConfiguration',
    'RENDERERS',
    'component_for',
    'render'
]
