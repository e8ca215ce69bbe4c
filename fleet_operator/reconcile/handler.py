"""
Component Handler

Applies a render result to the cluster: creates what is absent, updates
what diverged, leaves what matches alone and deletes what is no longer
wanted.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..core.client import ClusterClient
from ..core.config import OperatorSettings
from ..core.constants import ErrorMessages, KubernetesConstants
from ..core.exceptions import ApplyError, ApplyFailure, ClusterApiError, NotFoundError
from ..core.utils import redact_manifest
from ..render.base import Component, DependencyTier, RenderResult, ResourceDescriptor, ResourceKey
from .inventory import Inventory, entries_for, orphans
from .merge import merge_object, record_applied_fields

logger = logging.getLogger(__name__)


class ObjectState(str, Enum):
    """State an object was found in before the engine acted on it"""
    ABSENT = "absent"
    PRESENT_MATCHING = "present-matching"
    PRESENT_DIVERGENT = "present-divergent"
    DELETED = "deleted"

    def __str__(self) -> str:
        return self.value


@dataclass
class ApplyReport:
    """What one apply pass did"""
    created: List[ResourceKey] = field(default_factory=list)
    updated: List[ResourceKey] = field(default_factory=list)
    unchanged: List[ResourceKey] = field(default_factory=list)
    deleted: List[ResourceKey] = field(default_factory=list)
    states: Dict[ResourceKey, ObjectState] = field(default_factory=dict)

    @property
    def mutations(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


class ComponentHandler:
    """
    Reconciles the objects of one component against the cluster.

    Args:
        client: Cluster client
        owner: The custom resource that triggered the pass; objects it can
            own receive a controller owner reference to it
        settings: Operator naming registry
        inventory_name: When set, applied identities are recorded under this
            name and identities that disappear from later passes are pruned
    """

    def __init__(self, client: ClusterClient, owner: Optional[Dict[str, Any]],
                 settings: OperatorSettings, inventory_name: Optional[str] = None):
        self.client = client
        self.owner = owner
        self.settings = settings
        self.inventory = Inventory(client, inventory_name, settings.operator_namespace) if inventory_name else None

    # Ownership

    def _owner_reference(self) -> Optional[Dict[str, Any]]:
        if not self.owner:
            return None
        metadata = self.owner.get("metadata") or {}
        if not metadata.get("uid"):
            return None
        return {
            "apiVersion": self.owner["apiVersion"],
            "kind": self.owner["kind"],
            "name": metadata["name"],
            "uid": metadata["uid"],
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def can_own(self, namespace: str) -> bool:
        """An owner can own objects cluster-wide when cluster-scoped, else only in its namespace"""
        if not self.owner:
            return False
        owner_namespace = (self.owner.get("metadata") or {}).get("namespace") or ""
        return not owner_namespace or owner_namespace == namespace

    def _desired_manifest(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        manifest = copy.deepcopy(descriptor.body)
        metadata = manifest.setdefault("metadata", {})
        labels = metadata.setdefault("labels", {})
        labels[KubernetesConstants.MANAGED_BY_LABEL] = KubernetesConstants.OPERATOR_COMPONENT

        reference = self._owner_reference()
        if reference is not None and self.can_own(descriptor.namespace):
            metadata["ownerReferences"] = [reference]
        return record_applied_fields(manifest)

    # Apply

    def create_or_update_or_delete(self, component: Union[Component, RenderResult]) -> ApplyReport:
        """
        Apply a component (or an already rendered result).

        Every object is attempted even when earlier ones fail.

        Returns:
            ApplyReport describing what changed

        Raises:
            ApplyError: If any create, update or delete failed; carries every failure
        """
        result = component.objects() if isinstance(component, Component) else component
        report = ApplyReport()
        failures: List[ApplyFailure] = []

        previous = {}
        if self.inventory is not None:
            try:
                previous = self.inventory.load()
            except ClusterApiError as e:
                failures.append(ApplyFailure(self.inventory.name, "read-inventory", e))

        for descriptor in result.to_create:
            self._apply(descriptor, report, failures)

        explicit = {descriptor.key for descriptor in result.to_delete}
        deletions = [(descriptor.key, descriptor.api_version, descriptor.tier) for descriptor in result.to_delete]
        for key, api_version in orphans(previous, set(result.create_keys()) | explicit):
            logger.info(f"Pruning {key}, no longer rendered")
            deletions.append((key, api_version, DependencyTier.for_kind(key.kind)))

        # Dependents go before what they depend on
        deletions.sort(key=lambda deletion: deletion[2], reverse=True)
        failed_deletes = {}
        for key, api_version, _ in deletions:
            if not self._delete(key, api_version, report, failures):
                failed_deletes[key] = api_version

        if self.inventory is not None:
            entries = entries_for(result.to_create)
            # Keep failed prunes on record so the next pass retries them
            entries.update({key: api_version for key, api_version in failed_deletes.items() if key not in explicit})
            reference = self._owner_reference()
            owners = [reference] if reference is not None and self.can_own(self.inventory.namespace) else []
            try:
                self.inventory.save(entries, owners)
            except ClusterApiError as e:
                failures.append(ApplyFailure(self.inventory.name, "write-inventory", e))

        if failures:
            for failure in failures:
                logger.error(f"Failed to {failure}")
            raise ApplyError(ErrorMessages.ApplyError.BATCH_FAILED.format(count=len(failures)), failures)

        logger.info(f"Applied {len(result.to_create)} resource(s): {len(report.created)} created, "
                    f"{len(report.updated)} updated, {len(report.deleted)} deleted")
        return report

    def _apply(self, descriptor: ResourceDescriptor, report: ApplyReport, failures: List[ApplyFailure]) -> None:
        key = descriptor.key
        desired = self._desired_manifest(descriptor)

        try:
            live = self.client.get_optional(descriptor.api_version, descriptor.kind,
                                            descriptor.name, descriptor.namespace)
        except ClusterApiError as e:
            failures.append(ApplyFailure(key, "get", e))
            return

        if live is None:
            report.states[key] = ObjectState.ABSENT
            try:
                self.client.create(desired)
            except ClusterApiError as e:
                failures.append(ApplyFailure(key, "create", e))
                return
            logger.debug(f"Created {key}: {redact_manifest(desired)}")
            report.created.append(key)
            return

        merged = merge_object(live, desired)
        if merged == live:
            report.states[key] = ObjectState.PRESENT_MATCHING
            report.unchanged.append(key)
            return

        report.states[key] = ObjectState.PRESENT_DIVERGENT
        try:
            self.client.replace(merged)
        except ClusterApiError as e:
            failures.append(ApplyFailure(key, "update", e))
            return
        logger.debug(f"Updated {key}: {redact_manifest(merged)}")
        report.updated.append(key)

    def _delete(self, key: ResourceKey, api_version: str, report: ApplyReport,
                failures: List[ApplyFailure]) -> bool:
        try:
            self.client.delete(api_version, key.kind, key.name, key.namespace)
        except NotFoundError:
            report.states[key] = ObjectState.DELETED
            return True
        except ClusterApiError as e:
            failures.append(ApplyFailure(key, "delete", e))
            return False
        logger.debug(f"Deleted {key}")
        report.states[key] = ObjectState.DELETED
        report.deleted.append(key)
        return True
