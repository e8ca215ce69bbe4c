"""
Reconcile Outcomes and Status Tracking

Every pass ends in one of three outcomes: converged, degraded with a reason,
or a request to run again after a delay. The StatusManager keeps the
per-feature degraded/available picture the outcomes are derived from.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.client import ClusterClient
from ..core.constants import KubernetesConstants
from ..core.exceptions import ClusterApiError

logger = logging.getLogger(__name__)


class OutcomeState(str, Enum):
    """Result of one reconciliation pass"""
    CONVERGED = "converged"
    DEGRADED = "degraded"
    RETRY = "retry"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ReconcileOutcome:
    state: OutcomeState
    reason: str = ""
    delay: Optional[float] = None

    @classmethod
    def converged(cls) -> "ReconcileOutcome":
        return cls(OutcomeState.CONVERGED)

    @classmethod
    def degraded(cls, reason: str, retry_after: Optional[float] = None) -> "ReconcileOutcome":
        """Degraded; with ``retry_after`` the pass is also run again after that many seconds"""
        return cls(OutcomeState.DEGRADED, reason=reason, delay=retry_after)

    @classmethod
    def retry_after(cls, duration: float, reason: str = "") -> "ReconcileOutcome":
        return cls(OutcomeState.RETRY, reason=reason, delay=duration)

    @property
    def requeue(self) -> bool:
        return self.delay is not None


# Workloads whose readiness decides availability: (apiVersion, kind, namespace, name)
WorkloadRef = Tuple[str, str, str, str]


class StatusManager:
    """
    Degraded/available state of one feature.

    Availability is read from the status the cluster reports for the
    feature's workloads.
    """

    def __init__(self, feature: str, client: Optional[ClusterClient] = None):
        self.feature = feature
        self.client = client
        self.cr_found = False
        self.degraded_reason: Optional[str] = None
        self.degraded_detail = ""
        self._workloads: List[WorkloadRef] = []
        self._lock = threading.Lock()

    def on_cr_found(self) -> None:
        self.cr_found = True

    def on_cr_not_found(self) -> None:
        with self._lock:
            self.cr_found = False
            self.degraded_reason = None
            self.degraded_detail = ""
            self._workloads = []

    def set_degraded(self, reason: str, detail: str = "") -> None:
        with self._lock:
            if reason != self.degraded_reason:
                logger.warning(f"{self.feature} degraded: {reason}" + (f" ({detail})" if detail else ""))
            self.degraded_reason = reason
            self.degraded_detail = detail

    def clear_degraded(self) -> None:
        with self._lock:
            if self.degraded_reason is not None:
                logger.info(f"{self.feature} is no longer degraded")
            self.degraded_reason = None
            self.degraded_detail = ""

    @property
    def is_degraded(self) -> bool:
        return self.degraded_reason is not None

    def track_workloads(self, workloads: List[WorkloadRef]) -> None:
        with self._lock:
            self._workloads = list(workloads)

    @staticmethod
    def _workload_available(workload: Dict[str, Any]) -> bool:
        status = workload.get("status") or {}
        if workload.get("kind") == KubernetesConstants.Kind.DAEMON_SET.value:
            desired = status.get("desiredNumberScheduled")
            return desired is not None and status.get("numberAvailable", 0) >= desired
        wanted = (workload.get("spec") or {}).get("replicas", 1)
        return status.get("availableReplicas", 0) >= wanted

    def is_available(self) -> bool:
        """True when every tracked workload reports its pods available"""
        if self.client is None:
            return True
        for api_version, kind, namespace, name in self._workloads:
            try:
                workload = self.client.get_optional(api_version, kind, name, namespace)
            except ClusterApiError as e:
                logger.debug(f"Unable to read {kind} {namespace}/{name}: {e}")
                return False
            if workload is None or not self._workload_available(workload):
                return False
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "feature": self.feature,
            "found": self.cr_found,
            "degraded": self.is_degraded,
            "reason": self.degraded_reason or "",
            "detail": self.degraded_detail,
        }
