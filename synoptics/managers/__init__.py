"""
Manager components for the synoptics core.
"""

from .transaction_manager import (
    TransactionManager,
    Transaction,
    TransactionStatus,
    OperationRecord,
    StructuralDiff,
    CommitResult,
    # Exceptions
    TransactionError,
    TransactionNotFound,
    TransactionNotActive,
    OperationExecutionError,
)

__all__ = [
    'TransactionManager',
    'Transaction',
    'TransactionStatus',
    'OperationRecord',
    'StructuralDiff',
    'CommitResult',
    # Exceptions
    'TransactionError',
    'TransactionNotFound',
    'TransactionNotActive',
    'OperationExecutionError',
]
