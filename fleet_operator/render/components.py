"""
Component Images

Image names and versions of the workloads the operator deploys, and the
rules for turning them into pullable references for an installation.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from ..core.exceptions import ConfigurationInvalidError

TIGERA_REGISTRY = "quay.io/"
CALICO_REGISTRY = "docker.io/"


@dataclass(frozen=True)
class ComponentImage:
    """A workload image as published"""
    image: str
    version: str
    registry: str = TIGERA_REGISTRY


DEEP_PACKET_INSPECTION = ComponentImage(image="tigera/deep-packet-inspection", version="v3.15.0")
ELASTICSEARCH_GATEWAY = ComponentImage(image="tigera/es-gateway", version="v3.15.0")
GUARDIAN = ComponentImage(image="tigera/guardian", version="v3.15.0")
CSR_INIT_CONTAINER = ComponentImage(image="tigera/key-cert-provisioner", version="v1.1.7")


def get_reference(component: ComponentImage, registry: str = "", image_path: str = "",
                  image_prefix: str = "", digests: Optional[Dict[str, str]] = None) -> str:
    """
    Resolve the pullable reference of a component image.

    Args:
        component: Image to resolve
        registry: Registry override from the installation (a trailing '/' is added if missing)
        image_path: Replaces the repository path of the image when set
        image_prefix: Prepended to the image name when set
        digests: Optional image -> sha256 digest mapping; a digest pins the
            reference instead of the version tag

    Returns:
        Image reference such as ``quay.io/tigera/guardian:v3.15.0``

    Raises:
        ConfigurationInvalidError: If a digest is not a sha256 digest
    """
    resolved_registry = registry or component.registry
    if not resolved_registry.endswith("/"):
        resolved_registry += "/"

    path, _, name = component.image.rpartition("/")
    if image_path:
        path = image_path.strip("/")
    if image_prefix:
        name = f"{image_prefix}{name}"
    image = f"{path}/{name}" if path else name

    digest = (digests or {}).get(component.image)
    if digest:
        if not digest.startswith("sha256:"):
            raise ConfigurationInvalidError(f"digest for {component.image} must be a sha256 digest, got {digest}")
        return f"{resolved_registry}{image}@{digest}"
    return f"{resolved_registry}{image}:{component.version}"


def installation_reference(component: ComponentImage, installation) -> str:
    """Resolve ``component`` with the registry, path and prefix of an installation"""
    return get_reference(component, installation.registry, installation.image_path, installation.image_prefix)
