"""
Reconciliation Engine

Applies render results to the cluster and prunes what is no longer wanted.
"""

from .handler import ApplyReport, ComponentHandler, ObjectState
from .inventory import Inventory, entries_for, orphans
from .merge import merge_object, merge_values

__all__ = [
    'ApplyReport',
    'ComponentHandler',
    'ObjectState',
    'Inventory',
    'entries_for',
    'orphans',
    'merge_object',
    'merge_values'
]
