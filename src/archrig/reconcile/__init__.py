"""Per-resource reconciliation: oracle, backup-then-apply, postcondition."""

from archrig.reconcile.oracle import is_satisfied
from archrig.reconcile.reconciler import Reconciler
from archrig.reconcile.types import Outcome, Resource, ResourceKind, Snapshot

__all__ = ["Outcome", "Reconciler", "Resource", "ResourceKind", "Snapshot", "is_satisfied"]
