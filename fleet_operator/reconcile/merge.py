"""
Field-Level Merge

Overlays a desired manifest on the live object so that fields the operator
does not own survive an update, while fields the operator applied on an
earlier pass and no longer renders are removed.

What the operator applied is recorded on each object as a field set: the
shape of the applied manifest with every value dropped except the names of
named list items. Secret values therefore never end up in the record.
"""

import copy
import json
import logging
from typing import Any, Dict, List, Optional

from ..core.constants import KubernetesConstants

logger = logging.getLogger(__name__)

APPLIED_FIELDS_ANNOTATION = KubernetesConstants.APPLIED_FIELDS_ANNOTATION

# Metadata the API server owns
SERVER_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
    "finalizers",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
)

# Service spec fields assigned at creation and immutable afterwards
SERVICE_ASSIGNED_FIELDS = ("clusterIP", "clusterIPs", "ipFamilies", "ipFamilyPolicy")

# A volume carries exactly one of these
VOLUME_SOURCE_KEYS = frozenset((
    "configMap",
    "csi",
    "downwardAPI",
    "emptyDir",
    "ephemeral",
    "hostPath",
    "nfs",
    "persistentVolumeClaim",
    "projected",
    "secret",
))


def _is_named_list(items: List[Any]) -> bool:
    return bool(items) and all(isinstance(item, dict) and "name" in item for item in items)


def field_set(value: Any) -> Any:
    """The shape of ``value``: mapping keys and named list items, no values"""
    if isinstance(value, dict):
        return {key: field_set(item) for key, item in value.items()}
    if isinstance(value, list) and _is_named_list(value):
        return [dict(field_set(item), name=item["name"]) for item in value]
    return None


def applied_fields(manifest: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The field set recorded on ``manifest``, or None when it carries none"""
    annotations = (manifest.get("metadata") or {}).get("annotations") or {}
    recorded = annotations.get(APPLIED_FIELDS_ANNOTATION)
    if not recorded:
        return None
    try:
        fields = json.loads(recorded)
    except ValueError as e:
        logger.warning(f"Ignoring unreadable {APPLIED_FIELDS_ANNOTATION} annotation: {e}")
        return None
    return fields if isinstance(fields, dict) else None


def record_applied_fields(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp ``manifest`` with its own field set and return it"""
    metadata = manifest.setdefault("metadata", {})
    annotations = metadata.get("annotations") or {}
    annotations.pop(APPLIED_FIELDS_ANNOTATION, None)
    if annotations:
        metadata["annotations"] = annotations
    else:
        metadata.pop("annotations", None)

    fields = json.dumps(field_set(manifest), sort_keys=True, separators=(",", ":"))
    metadata.setdefault("annotations", {})[APPLIED_FIELDS_ANNOTATION] = fields
    return manifest


def _named_items(items: Any) -> Dict[str, Any]:
    if not isinstance(items, list):
        return {}
    return {item["name"]: item for item in items if isinstance(item, dict) and "name" in item}


def _without_other_volume_sources(live: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    sources = VOLUME_SOURCE_KEYS.intersection(desired)
    if not sources:
        return live
    return {key: value for key, value in live.items() if key not in VOLUME_SOURCE_KEYS or key in sources}


def merge_named_lists(live: List[Dict[str, Any]], desired: List[Dict[str, Any]],
                      applied: Any = None) -> List[Dict[str, Any]]:
    """
    Merge two lists of named items element by element.

    The desired list decides membership and order; an item present in both
    is merged recursively so live-only keys of that item are kept. A volume
    keeps only the source type the desired item names.
    """
    live_by_name = _named_items(live)
    applied_by_name = _named_items(applied)
    merged = []
    for item in desired:
        existing = live_by_name.get(item["name"])
        if isinstance(existing, dict):
            existing = _without_other_volume_sources(existing, item)
            merged.append(merge_values(existing, item, applied_by_name.get(item["name"])))
        else:
            merged.append(copy.deepcopy(item))
    return merged


def merge_values(live: Any, desired: Any, applied: Any = None) -> Any:
    """
    Recursively overlay ``desired`` on ``live``.

    Keys in ``applied`` (the field set of the previous apply) that
    ``desired`` no longer has are removed; other live-only keys are kept.
    """
    if isinstance(live, dict) and isinstance(desired, dict):
        merged = copy.deepcopy(live)
        previous = applied if isinstance(applied, dict) else {}
        for key in previous:
            if key not in desired:
                merged.pop(key, None)
        for key, value in desired.items():
            merged[key] = merge_values(live[key], value, previous.get(key)) if key in live else copy.deepcopy(value)
        return merged
    if isinstance(live, list) and isinstance(desired, list) and _is_named_list(desired) and _is_named_list(live):
        return merge_named_lists(live, desired, applied)
    return copy.deepcopy(desired)


def merge_object(live: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the object to send when updating ``live`` towards ``desired``.

    Keys the desired manifest does not mention keep their live values unless
    the live object records that the operator applied them. Server-owned
    metadata, ``status`` and server-assigned Service fields always keep their
    live values.
    """
    merged = merge_values(live, desired, applied_fields(live))

    live_metadata = live.get("metadata") or {}
    merged_metadata = merged.setdefault("metadata", {})
    for key in SERVER_METADATA:
        if key in live_metadata:
            merged_metadata[key] = copy.deepcopy(live_metadata[key])
        else:
            merged_metadata.pop(key, None)

    if "status" in live:
        merged["status"] = copy.deepcopy(live["status"])
    else:
        merged.pop("status", None)

    if merged.get("kind") == "Service":
        live_spec = live.get("spec") or {}
        merged_spec = merged.setdefault("spec", {})
        for key in SERVICE_ASSIGNED_FIELDS:
            if key in live_spec:
                merged_spec[key] = copy.deepcopy(live_spec[key])

    return merged
