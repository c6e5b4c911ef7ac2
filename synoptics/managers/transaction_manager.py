"""
TransactionManager - all-or-nothing multi-step changes across the stores.

Provides atomicity for operations spanning several stores (the cascade
delete being the main user):

- begin() snapshots every registered store (deep copy of all tables)
- apply() runs one operation against the live stores and records it
- commit() finalizes and reports the structural diff
- rollback() restores every store from its snapshot

The caller is expected to hold the shared store lock from begin() until
commit()/rollback() so no other writer observes the intermediate state.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class SnapshotCapable(Protocol):
    def create_snapshot(self, label: Optional[str] = None) -> Any: ...

    def restore_snapshot(self, snapshot: Any) -> None: ...


# ============================================================================
# Enums
# ============================================================================

class TransactionStatus(Enum):
    """Transaction lifecycle states."""
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class OperationRecord:
    """Record of an operation executed within a transaction."""
    operation: str
    params: Dict[str, Any]
    timestamp: datetime
    success: bool = False
    result: Optional[Any] = None
    error: Optional[str] = None


@dataclass
class StructuralDiff:
    """Structural differences produced by a transaction."""
    added: List[str] = field(default_factory=list)      # Added entity IDs
    removed: List[str] = field(default_factory=list)    # Removed entity IDs
    modified: List[str] = field(default_factory=list)   # Modified entity IDs
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """Check if diff has any changes."""
        return not (self.added or self.removed or self.modified)


@dataclass
class CommitResult:
    """Result of transaction commit."""
    transaction_id: str
    diff: StructuralDiff
    operations_applied: int


@dataclass
class Transaction:
    """Represents an active transaction."""
    id: str
    snapshots: Dict[str, Any]                  # store name -> snapshot
    operations: List[OperationRecord] = field(default_factory=list)
    diff: StructuralDiff = field(default_factory=StructuralDiff)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: TransactionStatus = TransactionStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Exceptions
# ============================================================================

class TransactionError(Exception):
    """Base exception for transaction errors."""
    pass


class TransactionNotFound(TransactionError):
    """Transaction does not exist."""
    pass


class TransactionNotActive(TransactionError):
    """Transaction is not in active state."""
    pass


class OperationExecutionError(TransactionError):
    """Operation execution failed."""
    pass


# ============================================================================
# TransactionManager
# ============================================================================

class TransactionManager:
    """
    Manages snapshot transactions over a set of named stores.

    Usage:
        tx_mgr = TransactionManager({"network": network_store, "layouts": layout_store})

        with network_store.lock:
            tx_id = tx_mgr.begin(metadata={"anchor": site_id})
            try:
                tx_mgr.apply(tx_id, "delete_node", {"entity_id": node_id},
                             lambda params: network_store.purge(EntityType.NODE, params["entity_id"]))
                tx_mgr.commit(tx_id)
            except OperationExecutionError:
                tx_mgr.rollback(tx_id)
                raise
    """

    def __init__(self, stores: Dict[str, SnapshotCapable]):
        """
        Initialize transaction manager.

        Args:
            stores: Name -> store supporting create_snapshot/restore_snapshot
        """
        self.stores = stores
        self.transactions: Dict[str, Transaction] = {}
        self._lock = threading.Lock()

        logger.info(f"TransactionManager initialized for stores: {', '.join(stores)}")

    # ========================================================================
    # Public API
    # ========================================================================

    def begin(self, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Begin a new transaction by snapshotting every store.

        Returns:
            transaction_id: UUID for this transaction
        """
        tx_id = str(uuid.uuid4())
        snapshots = {
            name: store.create_snapshot(label=f"tx-{tx_id[:8]}")
            for name, store in self.stores.items()
        }
        with self._lock:
            self.transactions[tx_id] = Transaction(
                id=tx_id,
                snapshots=snapshots,
                metadata=metadata or {},
            )

        logger.info(f"Transaction {tx_id} started ({len(snapshots)} store snapshots)")
        return tx_id

    def apply(
        self,
        transaction_id: str,
        operation_name: str,
        params: Dict[str, Any],
        executor: Callable[[Dict[str, Any]], Any],
    ) -> Any:
        """
        Apply a single operation within transaction context.

        Args:
            transaction_id: Transaction identifier
            operation_name: Name of operation to execute
            params: Operation parameters (``entity_id`` is tracked in the diff)
            executor: Callable executing the operation with ``params``

        Returns:
            Operation result

        Raises:
            TransactionNotFound: If transaction doesn't exist
            TransactionNotActive: If transaction not in ACTIVE state
            OperationExecutionError: If operation fails
        """
        transaction = self._get_transaction(transaction_id)

        if transaction.status != TransactionStatus.ACTIVE:
            raise TransactionNotActive(
                f"Transaction {transaction_id} is not active (status: {transaction.status.value})"
            )

        op_record = OperationRecord(
            operation=operation_name,
            params=params,
            timestamp=datetime.now(timezone.utc),
        )

        try:
            result = executor(params)
            op_record.result = result
            op_record.success = True
            self._update_diff(transaction, operation_name, params)
            return result

        except Exception as e:
            op_record.error = str(e)
            transaction.status = TransactionStatus.FAILED
            raise OperationExecutionError(
                f"Operation {operation_name} failed: {e}"
            ) from e

        finally:
            transaction.operations.append(op_record)

    def commit(self, transaction_id: str) -> CommitResult:
        """
        Commit transaction changes (the stores already hold them).

        Raises:
            TransactionNotFound: If transaction doesn't exist
            TransactionNotActive: If a failed transaction is committed
        """
        transaction = self._get_transaction(transaction_id)
        if transaction.status != TransactionStatus.ACTIVE:
            raise TransactionNotActive(
                f"Transaction {transaction_id} cannot be committed (status: {transaction.status.value})"
            )

        transaction.status = TransactionStatus.COMMITTED
        final_diff = transaction.diff

        logger.info(
            f"Transaction {transaction_id} committed "
            f"({len(transaction.operations)} operations, "
            f"{len(final_diff.added)} added, "
            f"{len(final_diff.modified)} modified, "
            f"{len(final_diff.removed)} removed)"
        )

        self._cleanup_transaction(transaction_id)

        return CommitResult(
            transaction_id=transaction_id,
            diff=final_diff,
            operations_applied=len(transaction.operations),
        )

    def rollback(self, transaction_id: str) -> None:
        """
        Rollback transaction, restoring every store from its snapshot.

        Raises:
            TransactionNotFound: If transaction doesn't exist
        """
        transaction = self._get_transaction(transaction_id)

        for name, snapshot in transaction.snapshots.items():
            self.stores[name].restore_snapshot(snapshot)

        transaction.status = TransactionStatus.ROLLED_BACK

        logger.info(
            f"Transaction {transaction_id} rolled back "
            f"({len(transaction.operations)} operations discarded)"
        )

        self._cleanup_transaction(transaction_id)

    def diff(self, transaction_id: str) -> StructuralDiff:
        """Get current diff for transaction (preview changes)."""
        return self._get_transaction(transaction_id).diff

    def get_status(self, transaction_id: str) -> Dict[str, Any]:
        """
        Get transaction status and metadata.

        Raises:
            TransactionNotFound: If transaction doesn't exist
        """
        transaction = self._get_transaction(transaction_id)

        return {
            "transaction_id": transaction.id,
            "status": transaction.status.value,
            "operations_count": len(transaction.operations),
            "started_at": transaction.started_at.isoformat(),
            "metadata": transaction.metadata,
            "diff": {
                "added": len(transaction.diff.added),
                "removed": len(transaction.diff.removed),
                "modified": len(transaction.diff.modified)
            }
        }

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _get_transaction(self, transaction_id: str) -> Transaction:
        with self._lock:
            if transaction_id not in self.transactions:
                raise TransactionNotFound(f"Transaction {transaction_id} not found")
            return self.transactions[transaction_id]

    def _update_diff(self, transaction: Transaction, operation_name: str,
                     params: Dict[str, Any]) -> None:
        entity_id = str(params.get("entity_id", "unknown"))
        if "create" in operation_name or "add" in operation_name:
            target = transaction.diff.added
        elif "delete" in operation_name or "remove" in operation_name:
            target = transaction.diff.removed
        else:
            target = transaction.diff.modified
        if entity_id not in target:
            target.append(entity_id)

    def _cleanup_transaction(self, transaction_id: str) -> None:
        with self._lock:
            self.transactions.pop(transaction_id, None)


__all__ = [
    "TransactionManager",
    "Transaction",
    "TransactionStatus",
    "OperationRecord",
    "StructuralDiff",
    "CommitResult",
    "TransactionError",
    "TransactionNotFound",
    "TransactionNotActive",
    "OperationExecutionError",
]
