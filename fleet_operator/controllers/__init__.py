"""
Controller Drivers

Per-feature controllers that gather inputs, build a configuration, render
it and apply the result, reporting one outcome per pass.
"""

from .clusterconnection_controller import ClusterConnectionController
from .dpi_controller import DPIController
from .driver import FeatureController, ReconcileRequest
from .queue import WorkQueue
from .status import OutcomeState, ReconcileOutcome, StatusManager

__all__ = [
    'ClusterConnectionController',
    'DPIController',
    'FeatureController',
    'ReconcileRequest',
    'WorkQueue',
    'OutcomeState',
    'ReconcileOutcome',
    'StatusManager'
]
