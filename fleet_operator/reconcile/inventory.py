"""
Applied Resource Inventory

Remembers which resources a component applied on its last pass so objects
it no longer renders can be pruned. The record lives in a ConfigMap in the
operator namespace.
"""

import logging
import yaml
from typing import Any, Dict, Iterable, Optional, Tuple

from ..core.client import ClusterClient
from ..core.constants import KubernetesConstants
from ..render.base import ResourceKey

logger = logging.getLogger(__name__)

INVENTORY_KEY = "resources.yaml"
INVENTORY_PREFIX = "fleet-inventory"

# ResourceKey -> apiVersion
Entries = Dict[ResourceKey, str]


class Inventory:
    """Identities a component applied, keyed by ResourceKey"""

    def __init__(self, client: ClusterClient, component: str, namespace: str):
        self.client = client
        self.component = component
        self.namespace = namespace
        self.name = f"{INVENTORY_PREFIX}-{component}"
        self._stored: Optional[Dict[str, Any]] = None

    @staticmethod
    def _encode(entries: Entries) -> str:
        rows = [
            {"apiVersion": api_version, "kind": key.kind, "namespace": key.namespace, "name": key.name}
            for key, api_version in sorted(entries.items())
        ]
        return yaml.safe_dump(rows, default_flow_style=False, sort_keys=True)

    @staticmethod
    def _decode(text: str) -> Entries:
        entries = {}
        for row in yaml.safe_load(text) or []:
            key = ResourceKey(row["kind"], row.get("namespace") or "", row["name"])
            entries[key] = row["apiVersion"]
        return entries

    def load(self) -> Entries:
        """Entries recorded by the previous pass (empty when none)"""
        self._stored = self.client.get_optional(
            KubernetesConstants.CORE_API_VERSION, KubernetesConstants.Kind.CONFIG_MAP.value,
            self.name, self.namespace)
        if self._stored is None:
            return {}
        return self._decode((self._stored.get("data") or {}).get(INVENTORY_KEY, ""))

    def save(self, entries: Entries, owner_references: Iterable[Dict[str, Any]] = ()) -> bool:
        """
        Record ``entries``; the ConfigMap is only written when its content changes.

        Returns:
            True when the ConfigMap was created or replaced
        """
        if self._stored is None:
            self.load()
        if self._stored is None and not entries:
            return False

        content = self._encode(entries)
        if self._stored is not None and (self._stored.get("data") or {}).get(INVENTORY_KEY) == content:
            return False

        manifest = {
            "apiVersion": KubernetesConstants.CORE_API_VERSION,
            "kind": KubernetesConstants.Kind.CONFIG_MAP.value,
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": {KubernetesConstants.MANAGED_BY_LABEL: KubernetesConstants.OPERATOR_COMPONENT},
            },
            "data": {INVENTORY_KEY: content},
        }
        owners = list(owner_references)
        if owners:
            manifest["metadata"]["ownerReferences"] = owners

        if self._stored is None:
            self._stored = self.client.create(manifest)
        else:
            manifest["metadata"]["resourceVersion"] = self._stored["metadata"].get("resourceVersion")
            self._stored = self.client.replace(manifest)
        logger.debug(f"Recorded {len(entries)} resource(s) in inventory {self.namespace}/{self.name}")
        return True


def entries_for(descriptors: Iterable[Any]) -> Entries:
    return {descriptor.key: descriptor.api_version for descriptor in descriptors}


def orphans(previous: Entries, current: Iterable[ResourceKey]) -> Tuple[Tuple[ResourceKey, str], ...]:
    """Previously applied identities missing from ``current``"""
    keep = set(current)
    return tuple((key, api_version) for key, api_version in sorted(previous.items()) if key not in keep)
