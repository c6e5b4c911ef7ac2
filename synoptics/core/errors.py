"""Typed failures raised by the synoptics stores and cascade resolver.

Every error carries a stable ``code`` and the structured attributes needed to
build an actionable message for the end user. Nothing here is retried: these
are caller/input errors, not transient infrastructure failures.
"""

from typing import Any, Dict, Optional


class SynopticsError(Exception):
    """Base exception for synoptics errors."""

    code = "synoptics_error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class NotFound(SynopticsError):
    """Referenced parent or entity does not exist."""

    code = "not_found"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type.replace('_', ' ').capitalize()} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )


class GasTypeMismatch(SynopticsError):
    code = "gas_type_mismatch"

    def __init__(self, expected: str, actual: str, node_id: Optional[str] = None,
                 message: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        self.node_id = node_id
        super().__init__(
            message or (
                f"This connection would mix gas types: node {node_id} carries "
                f"{actual}, connection carries {expected}"
            ),
            expected=expected,
            actual=actual,
            node_id=node_id,
        )


class SelfConnection(SynopticsError):
    code = "self_connection"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"A node cannot be connected to itself ({node_id})", node_id=node_id)


class DuplicateConnection(SynopticsError):
    code = "duplicate_connection"

    def __init__(self, from_node_id: str, to_node_id: str, existing_id: str,
                 reverse: bool = False):
        self.from_node_id = from_node_id
        self.to_node_id = to_node_id
        self.existing_id = existing_id
        self.reverse = reverse
        direction = "in the reverse direction " if reverse else ""
        super().__init__(
            f"Nodes {from_node_id} and {to_node_id} are already connected "
            f"{direction}(connection {existing_id})",
            from_node_id=from_node_id,
            to_node_id=to_node_id,
            existing_id=existing_id,
            reverse=reverse,
        )


class InvalidPlacement(SynopticsError):
    """Building/floor/zone references do not describe one consistent location."""

    code = "invalid_placement"


class InvalidElementType(SynopticsError):
    """Operation needs another element variant (e.g. a valve)."""

    code = "invalid_element_type"

    def __init__(self, entity_id: str, actual: str, expected: str):
        self.entity_id = entity_id
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"{entity_id} is a {actual}, not a {expected}",
            entity_id=entity_id,
            actual=actual,
            expected=expected,
        )


class CascadeInProgress(SynopticsError):
    code = "cascade_in_progress"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type.replace('_', ' ').capitalize()} {entity_id} is being deleted; "
            f"retry once the deletion has finished",
            entity_type=entity_type,
            entity_id=entity_id,
        )


class DependentsExist(SynopticsError):
    """Restrict delete refused because rows still depend on the target."""

    code = "dependents_exist"

    def __init__(self, entity_type: str, entity_id: str, counts: Dict[str, int]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.counts = counts
        listing = ", ".join(f"{n} {name}" for name, n in sorted(counts.items()))
        super().__init__(
            f"Cannot delete {entity_type.replace('_', ' ')} {entity_id}: still has {listing}. "
            f"Relocate them first or use a cascade delete",
            entity_type=entity_type,
            entity_id=entity_id,
            counts=counts,
        )


class StaleConfirmation(SynopticsError):
    """The confirmed dependency report no longer matches the stored state."""

    code = "stale_confirmation"

    def __init__(self, expected_etag: str, actual_etag: str):
        self.expected_etag = expected_etag
        self.actual_etag = actual_etag
        super().__init__(
            "The data changed since the deletion summary was confirmed; "
            "review the new summary and confirm again",
            expected_etag=expected_etag,
            actual_etag=actual_etag,
        )


class OptimisticLockError(SynopticsError):
    """Raised when etag mismatch indicates concurrent modification."""

    code = "optimistic_lock"

    def __init__(self, layout_id: str, expected_etag: str, actual_etag: str):
        self.layout_id = layout_id
        self.expected_etag = expected_etag
        self.actual_etag = actual_etag
        super().__init__(
            f"Layout {layout_id} was modified (expected etag {expected_etag[:8]}..., "
            f"got {actual_etag[:8]}...)",
            layout_id=layout_id,
            expected_etag=expected_etag,
            actual_etag=actual_etag,
        )


__all__ = [
    "SynopticsError",
    "NotFound",
    "GasTypeMismatch",
    "SelfConnection",
    "DuplicateConnection",
    "InvalidPlacement",
    "InvalidElementType",
    "CascadeInProgress",
    "DependentsExist",
    "StaleConfirmation",
    "OptimisticLockError",
]
