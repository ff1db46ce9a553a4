from crm_sync.cache import CollectionCache
from crm_sync.drag import DragState, DragTransitionController
from crm_sync.mutations import MutationCoordinator, MutationOutcome, MutationState
from crm_sync.query import QueryStateManager
from crm_sync.resources import GROUPS, LEADS, PRODUCTS, ResourceDescriptor, get_resource
from crm_sync.runtime import bootstrap
from crm_sync.selection import SelectionTracker
from crm_sync.bulk import BulkOperationExecutor
from crm_sync.view import CollectionView

__all__ = [
    "bootstrap",
    "BulkOperationExecutor",
    "CollectionCache",
    "CollectionView",
    "DragState",
    "DragTransitionController",
    "GROUPS",
    "LEADS",
    "MutationCoordinator",
    "MutationOutcome",
    "MutationState",
    "PRODUCTS",
    "QueryStateManager",
    "ResourceDescriptor",
    "SelectionTracker",
    "get_resource",
]
