"""
In-Memory Cluster Store

A ClusterClient that keeps objects in a dictionary. It assigns the
server-owned fields a real API server would (uid, resourceVersion,
creationTimestamp, Service clusterIP), enforces create-once semantics,
records every mutating request and can be told to fail specific requests.
"""

import copy
import itertools
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .client import ClusterClient, object_reference
from .exceptions import AlreadyExistsError, ClusterApiError, NotFoundError

logger = logging.getLogger(__name__)

StoreKey = Tuple[str, str, str]


class InMemoryClusterClient(ClusterClient):
    """Dictionary-backed cluster store"""

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self._objects: Dict[StoreKey, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)
        self._cluster_ips = itertools.count(10)
        self._failures: Dict[Tuple[str, str, str], Exception] = {}
        self.mutations: List[Tuple[str, StoreKey]] = []
        for manifest in objects or []:
            self.seed(manifest)

    @staticmethod
    def _key(kind: str, name: str, namespace: str = "") -> StoreKey:
        return (kind, namespace or "", name)

    @staticmethod
    def _manifest_key(manifest: Dict[str, Any]) -> StoreKey:
        metadata = manifest.get("metadata", {})
        return (manifest["kind"], metadata.get("namespace", "") or "", metadata["name"])

    @property
    def mutation_count(self) -> int:
        """Number of create, replace and delete requests served"""
        return len(self.mutations)

    def reset_mutations(self) -> None:
        self.mutations.clear()

    def fail_on(self, operation: str, kind: str, name: str, error: Optional[Exception] = None) -> None:
        """
        Make every subsequent ``operation`` on objects of ``kind`` named
        ``name`` fail with ``error`` (a 500 ClusterApiError by default).
        """
        self._failures[(operation, kind, name)] = error or ClusterApiError(
            f"injected {operation} failure for {kind} {name}", status=500, reason="InternalError"
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check_failure(self, operation: str, kind: str, name: str) -> None:
        error = self._failures.get((operation, kind, name))
        if error is not None:
            raise error

    def _stamp(self, manifest: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        stored = copy.deepcopy(manifest)
        metadata = stored.setdefault("metadata", {})
        metadata["resourceVersion"] = str(next(self._versions))
        if existing is None:
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            metadata["generation"] = 1
        else:
            live_metadata = existing["metadata"]
            metadata["uid"] = live_metadata["uid"]
            metadata["creationTimestamp"] = live_metadata["creationTimestamp"]
            changed = stored.get("spec") != existing.get("spec")
            metadata["generation"] = live_metadata.get("generation", 1) + (1 if changed else 0)

        if stored.get("kind") == "Service":
            spec = stored.setdefault("spec", {})
            live_ip = (existing or {}).get("spec", {}).get("clusterIP")
            if live_ip and spec.get("clusterIP") not in (None, live_ip):
                raise ClusterApiError("spec.clusterIP: field is immutable", status=422, reason="Invalid")
            if "clusterIP" not in spec:
                spec["clusterIP"] = live_ip or f"10.96.0.{next(self._cluster_ips)}"
                spec["clusterIPs"] = [spec["clusterIP"]]
        return stored

    def seed(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Store an object without recording it as a mutation"""
        with self._lock:
            key = self._manifest_key(manifest)
            stored = self._stamp(manifest, self._objects.get(key))
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> Dict[str, Any]:
        with self._lock:
            self._check_failure("get", kind, name)
            stored = self._objects.get(self._key(kind, name, namespace))
            if stored is None:
                raise NotFoundError(f"{object_reference(api_version, kind, name, namespace)} not found")
            return copy.deepcopy(stored)

    def list(self, api_version: str, kind: str, namespace: str = "",
             label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        selector = {}
        for term in (label_selector or "").split(","):
            if "=" in term:
                label, value = term.split("=", 1)
                selector[label.strip()] = value.strip()

        with self._lock:
            items = []
            for (stored_kind, stored_namespace, _), stored in sorted(self._objects.items()):
                if stored_kind != kind:
                    continue
                if namespace and stored_namespace != namespace:
                    continue
                labels = stored.get("metadata", {}).get("labels") or {}
                if any(labels.get(label) != value for label, value in selector.items()):
                    continue
                items.append(copy.deepcopy(stored))
            return items

    def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        key = self._manifest_key(manifest)
        kind, namespace, name = key
        with self._lock:
            self._check_failure("create", kind, name)
            if key in self._objects:
                raise AlreadyExistsError(
                    f"{object_reference(manifest['apiVersion'], kind, name, namespace)} already exists"
                )
            if manifest.get("metadata", {}).get("resourceVersion"):
                raise ClusterApiError("resourceVersion should not be set on objects to be created",
                                      status=400, reason="BadRequest")
            stored = self._stamp(manifest)
            self._objects[key] = stored
            self.mutations.append(("create", key))
            return copy.deepcopy(stored)

    def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        key = self._manifest_key(manifest)
        kind, namespace, name = key
        reference = object_reference(manifest["apiVersion"], kind, name, namespace)
        with self._lock:
            self._check_failure("replace", kind, name)
            existing = self._objects.get(key)
            if existing is None:
                raise NotFoundError(f"{reference} not found")
            requested_version = manifest.get("metadata", {}).get("resourceVersion")
            if requested_version and requested_version != existing["metadata"]["resourceVersion"]:
                raise ClusterApiError(f"{reference}: the object has been modified", status=409, reason="Conflict")
            stored = self._stamp(manifest, existing)
            self._objects[key] = stored
            self.mutations.append(("replace", key))
            return copy.deepcopy(stored)

    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        key = self._key(kind, name, namespace)
        with self._lock:
            self._check_failure("delete", kind, name)
            if key not in self._objects:
                raise NotFoundError(f"{object_reference(api_version, kind, name, namespace)} not found")
            del self._objects[key]
            self.mutations.append(("delete", key))
