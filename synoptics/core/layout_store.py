"""Layout Store Module - diagram surfaces and per-layout node positions.

This module provides storage for layouts with:
- Site- or floor-scoped layouts validated against the hierarchy
- Per-(layout, node) positions validated against the network
- Orphan cleanup of positions when a node is deleted (lifecycle hook)
- Annotations (titled regions and labels) owned by a layout
- Etag-based optimistic concurrency control
- File-based persistence (JSON, sorted keys) in project directories

The store shares the network store's lock, so a cascade holding that lock
sees layouts and network rows in one consistent state.

Usage:
    from synoptics.core.layout_store import LayoutStore

    layouts = LayoutStore(network_store)
    layout = layouts.create_layout(site.id, "Main synoptic")
    layouts.set_position(layout.id, node.id, 120, 340)

    # Update with concurrency check
    current = layouts.get_layout(layout.id)
    layouts.update_layout(layout.id, expected_etag=current.etag, name="Ground floor")

    # Persist to file
    layouts.save_to_file(layout.id, "/projects/hospital")
"""

import json
import logging
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from synoptics.core.errors import InvalidPlacement, NotFound, OptimisticLockError
from synoptics.core.hierarchy_store import StoreSnapshot
from synoptics.core.hooks import EntityType, HookRegistry, LifecycleHook
from synoptics.core.network_store import NetworkStore
from synoptics.layout.engines.grid import compute_grid_layout
from synoptics.models.enums import AnnotationType, LayoutType
from synoptics.models.hierarchy import utc_now
from synoptics.models.layout_metadata import Annotation, Layout, NodePosition

logger = logging.getLogger(__name__)

LAYOUT_FILE_DIR = "layouts"


class _NodeDeletionHook(LifecycleHook):
    """Drops positions of deleted nodes from every layout."""

    def __init__(self, store: "LayoutStore"):
        self._store = store

    def on_deleted(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        if entity_type == EntityType.NODE:
            self._store.forget_node(entity_id)


class LayoutStore(HookRegistry):
    """Thread-safe storage for layouts with file persistence.

    Hooks registered on this store receive ``EntityType.LAYOUT`` events with
    the layout record, and ``EntityType.NODE_POSITION`` events whose entity
    id is the layout id and whose record is ``{"node_id", "position"}``.
    ``EntityType.ANNOTATION`` events carry the annotation record.
    """

    UPDATABLE_FIELDS = ("name", "background_url", "metadata")
    ANNOTATION_FIELDS = ("annotation_type", "title", "subtitle", "x", "y", "size",
                         "color", "style", "interactive", "metadata")

    def __init__(self, network: NetworkStore):
        super().__init__()
        self._network = network
        self._lock = network.lock
        self._layouts: Dict[str, Layout] = {}
        self._annotations: Dict[str, Annotation] = {}

        network.add_hook(_NodeDeletionHook(self))
        network.register_dependents(self._count_layouts)

    @property
    def network(self) -> NetworkStore:
        return self._network

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _guard(self, *entity_ids: Optional[str]) -> None:
        self._network._guard(*entity_ids)

    def _fetch(self, layout_id: str) -> Layout:
        layout = self._layouts.get(layout_id)
        if layout is None:
            raise NotFound(EntityType.LAYOUT.value, layout_id)
        return layout

    def _count_layouts(self, entity_type: EntityType, entity_id: str) -> Dict[str, int]:
        if entity_type == EntityType.SITE:
            n = sum(1 for layout in self._layouts.values() if layout.site_id == entity_id)
        elif entity_type == EntityType.FLOOR:
            n = sum(1 for layout in self._layouts.values() if layout.floor_id == entity_id)
        else:
            n = 0
        return {"layouts": n} if n else {}

    def _check_node(self, layout: Layout, node_id: str) -> None:
        node = self._network.get_node(node_id)
        if node.site_id != layout.site_id:
            raise InvalidPlacement(
                f"Node {node_id} belongs to site {node.site_id}, layout {layout.id} to site {layout.site_id}",
                node_id=node_id,
                layout_id=layout.id,
            )

    def _bump(self, layout: Layout) -> None:
        object.__setattr__(layout, "version", layout.version + 1)
        layout.touch()

    def _position_event(self, event: str, layout_id: str, node_id: str,
                        old: Optional[NodePosition], new: Optional[NodePosition]) -> None:
        if event == "on_updated":
            self._dispatch(event, EntityType.NODE_POSITION, layout_id,
                           {"node_id": node_id, "position": old},
                           {"node_id": node_id, "position": new})
        else:
            self._dispatch(event, EntityType.NODE_POSITION, layout_id,
                           {"node_id": node_id, "position": new or old})

    # =========================================================================
    # Layout CRUD
    # =========================================================================

    def create_layout(
        self,
        site_id: str,
        name: str,
        layout_type: Union[LayoutType, str] = LayoutType.SITE,
        floor_id: Optional[str] = None,
        background_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Layout:
        """Create a site- or floor-scoped layout.

        Raises:
            NotFound: If the site or floor does not exist
            InvalidPlacement: If the floor belongs to another site
            ValueError: If floor_id is missing for a floor layout (or given for a site layout)
        """
        with self._lock:
            self._guard(site_id, floor_id)
            self._network.get_site(site_id)
            if floor_id:
                floor_site = self._network.site_id_of(EntityType.FLOOR, floor_id)
                if floor_site != site_id:
                    raise InvalidPlacement(
                        f"Floor {floor_id} belongs to site {floor_site}, not {site_id}",
                        floor_id=floor_id,
                        site_id=site_id,
                    )

            layout = Layout(
                id=self._network._new_id(),
                site_id=site_id,
                name=name,
                layout_type=LayoutType(layout_type),
                floor_id=floor_id,
                background_url=background_url,
                metadata=metadata or {},
            )
            self._layouts[layout.id] = layout
            logger.debug(f"Created layout {layout.id} (etag: {layout.etag[:8]}...)")
            self._dispatch("on_created", EntityType.LAYOUT, layout.id, layout)
            return deepcopy(layout)

    def get_layout(self, layout_id: str) -> Layout:
        """Retrieve a deep copy of a layout.

        Raises:
            NotFound: If layout not found
        """
        with self._lock:
            return deepcopy(self._fetch(layout_id))

    def list_layouts(
        self,
        site_id: Optional[str] = None,
        floor_id: Optional[str] = None,
        layout_type: Optional[Union[LayoutType, str]] = None,
    ) -> List[Layout]:
        with self._lock:
            return [
                deepcopy(layout) for layout in self._layouts.values()
                if (site_id is None or layout.site_id == site_id)
                and (floor_id is None or layout.floor_id == floor_id)
                and (layout_type is None or layout.layout_type == LayoutType(layout_type))
            ]

    def update_layout(self, layout_id: str, expected_etag: Optional[str] = None,
                      **changes: Any) -> Layout:
        """Update layout attributes with optimistic concurrency control.

        Raises:
            NotFound: If layout not found
            OptimisticLockError: If expected_etag doesn't match current etag
            ValueError: On fields that cannot be updated
        """
        unknown = sorted(set(changes) - set(self.UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(
                f"Cannot update {', '.join(unknown)} on layout; "
                f"updatable fields: {', '.join(self.UPDATABLE_FIELDS)}"
            )

        with self._lock:
            self._guard(layout_id)
            current = self._fetch(layout_id)
            if expected_etag is not None and current.etag != expected_etag:
                raise OptimisticLockError(layout_id, expected_etag, current.etag)

            data = current.model_dump()
            data.update(changes)
            data["etag"] = None
            updated = Layout.model_validate(data)
            object.__setattr__(updated, "created_at", current.created_at)
            self._bump(updated)

            self._layouts[layout_id] = updated
            logger.debug(f"Updated layout {layout_id} v{updated.version} (etag: {updated.etag[:8]}...)")
            self._dispatch("on_updated", EntityType.LAYOUT, layout_id, current, updated)
            return deepcopy(updated)

    def delete_layout(self, layout_id: str) -> bool:
        """Delete a layout together with all of its positions.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            self._guard(layout_id)
            if layout_id not in self._layouts:
                return False
            self.purge(layout_id)
            return True

    def purge(self, layout_id: str) -> Layout:
        """Remove a layout and its annotations without cascade guard checks (cascade resolver only)."""
        with self._lock:
            for annotation_id in self._annotation_ids(layout_id):
                self.purge_annotation(annotation_id)
            layout = self._layouts.pop(layout_id)
            logger.debug(f"Deleted layout {layout_id} ({len(layout.positions)} positions)")
            self._dispatch("on_deleted", EntityType.LAYOUT, layout_id, layout)
            return layout

    def get_etag(self, layout_id: str) -> str:
        with self._lock:
            return self._fetch(layout_id).etag

    # =========================================================================
    # Positions
    # =========================================================================

    def set_position(self, layout_id: str, node_id: str, x: float, y: float,
                     rotation: float = 0.0) -> NodePosition:
        """Place (or move) a node on a layout.

        Floor layouts accept nodes of other floors of the same site.

        Raises:
            NotFound: If the layout or node does not exist
            InvalidPlacement: If the node belongs to another site
        """
        with self._lock:
            self._guard(layout_id, node_id)
            layout = self._fetch(layout_id)
            self._check_node(layout, node_id)

            position = NodePosition(x=x, y=y, rotation=rotation)
            old = layout.positions.get(node_id)
            layout.positions[node_id] = position
            self._bump(layout)
            logger.debug(f"Placed node {node_id} on layout {layout_id} at ({x}, {y})")
            self._position_event("on_updated" if old else "on_created", layout_id, node_id, old, position)
            return position.model_copy()

    def get_position(self, layout_id: str, node_id: str) -> NodePosition:
        """
        Raises:
            NotFound: If the layout does not exist or the node is not placed on it
        """
        with self._lock:
            position = self._fetch(layout_id).positions.get(node_id)
            if position is None:
                raise NotFound(EntityType.NODE_POSITION.value, f"{layout_id}/{node_id}")
            return position.model_copy()

    def get_positions(self, layout_id: str) -> Dict[str, NodePosition]:
        with self._lock:
            return {k: v.model_copy() for k, v in self._fetch(layout_id).positions.items()}

    def delete_position(self, layout_id: str, node_id: str) -> bool:
        """Remove a node from a layout.

        Returns:
            True if removed, False if the node was not placed
        """
        with self._lock:
            self._guard(layout_id, node_id)
            layout = self._fetch(layout_id)
            if node_id not in layout.positions:
                return False
            self.purge_position(layout_id, node_id)
            return True

    def purge_position(self, layout_id: str, node_id: str) -> NodePosition:
        """Remove a position without cascade guard checks (cascade resolver only)."""
        with self._lock:
            layout = self._fetch(layout_id)
            position = layout.positions.pop(node_id)
            self._bump(layout)
            self._position_event("on_deleted", layout_id, node_id, position, None)
            return position

    def layouts_for_node(self, node_id: str) -> List[str]:
        """IDs of the layouts a node is placed on."""
        with self._lock:
            return [lid for lid, layout in self._layouts.items() if node_id in layout.positions]

    def forget_node(self, node_id: str) -> int:
        """Drop a node from every layout; returns how many positions were removed."""
        with self._lock:
            layout_ids = self.layouts_for_node(node_id)
            for layout_id in layout_ids:
                self.purge_position(layout_id, node_id)
            if layout_ids:
                logger.debug(f"Removed orphaned positions of node {node_id} from {len(layout_ids)} layouts")
            return len(layout_ids)

    def apply_positions(self, layout_id: str, positions: Dict[str, NodePosition],
                        overwrite: bool = True) -> int:
        """Write an auto-layout result into a layout.

        All nodes are validated before anything is written.

        Args:
            layout_id: Target layout
            positions: node_id -> NodePosition
            overwrite: If False, nodes already placed keep their position

        Returns:
            Number of positions written
        """
        with self._lock:
            self._guard(layout_id, *positions)
            layout = self._fetch(layout_id)
            for node_id in positions:
                self._check_node(layout, node_id)

            written = 0
            for node_id, position in sorted(positions.items()):
                old = layout.positions.get(node_id)
                if old is not None and not overwrite:
                    continue
                layout.positions[node_id] = position.model_copy()
                self._position_event("on_updated" if old else "on_created", layout_id, node_id, old, position)
                written += 1

            if written:
                self._bump(layout)
            logger.info(f"Applied {written} positions to layout {layout_id}")
            return written

    def import_nodes(self, layout_id: str, node_ids: Iterable[str]) -> Dict[str, Any]:
        """Place nodes on a layout in a grid, skipping nodes already placed.

        Per-node failures do not abort the import.

        Returns:
            {"imported": int, "failed": int, "results": {node_id: [x, y, rotation]},
             "errors": [{"node_id", "error"}]}
        """
        node_ids = list(node_ids)
        grid = compute_grid_layout(node_ids)
        results: Dict[str, List[float]] = {}
        errors: List[Dict[str, str]] = []

        with self._lock:
            layout = self._fetch(layout_id)
            for node_id in node_ids:
                if node_id in layout.positions:
                    errors.append({"node_id": node_id, "error": "Node already exists in this layout"})
                    continue
                try:
                    pos = grid[node_id]
                    results[node_id] = self.set_position(layout_id, node_id, pos.x, pos.y).to_list()
                except (NotFound, InvalidPlacement) as e:
                    errors.append({"node_id": node_id, "error": e.message})

        logger.info(f"Imported {len(results)} nodes into layout {layout_id} ({len(errors)} failed)")
        return {
            "imported": len(results),
            "failed": len(errors),
            "results": results,
            "errors": errors,
        }

    # =========================================================================
    # Annotations
    # =========================================================================

    def _fetch_annotation(self, annotation_id: str) -> Annotation:
        annotation = self._annotations.get(annotation_id)
        if annotation is None:
            raise NotFound(EntityType.ANNOTATION.value, annotation_id)
        return annotation

    def _annotation_ids(self, layout_id: str) -> List[str]:
        return [aid for aid, a in self._annotations.items() if a.layout_id == layout_id]

    def _check_annotation_fields(self, fields: Iterable[str]) -> None:
        unknown = sorted(set(fields) - set(self.ANNOTATION_FIELDS))
        if unknown:
            raise ValueError(
                f"Unknown annotation fields: {', '.join(unknown)}; "
                f"allowed: {', '.join(self.ANNOTATION_FIELDS)}"
            )

    def _changed_annotation(self, current: Annotation, changes: Dict[str, Any]) -> Annotation:
        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = utc_now()
        return Annotation.model_validate(data)

    def create_annotation(self, layout_id: str, annotation_type: Union[AnnotationType, str],
                          title: str, x: float, y: float, **fields: Any) -> Annotation:
        """Add an annotation to a layout.

        Raises:
            NotFound: If the layout does not exist
            ValueError: On unknown fields
        """
        self._check_annotation_fields(fields)
        with self._lock:
            self._guard(layout_id)
            self._fetch(layout_id)
            annotation = Annotation(id=self._network._new_id(), layout_id=layout_id,
                                    annotation_type=annotation_type, title=title, x=x, y=y, **fields)
            self._annotations[annotation.id] = annotation
            logger.debug(f"Created annotation {annotation.id} on layout {layout_id}")
            self._dispatch("on_created", EntityType.ANNOTATION, annotation.id, annotation)
            return annotation.model_copy(deep=True)

    def get_annotation(self, annotation_id: str) -> Annotation:
        with self._lock:
            return self._fetch_annotation(annotation_id).model_copy(deep=True)

    def list_annotations(self, layout_id: str) -> List[Annotation]:
        """Annotations of a layout in creation order.

        Raises:
            NotFound: If the layout does not exist
        """
        with self._lock:
            self._fetch(layout_id)
            return [self._annotations[aid].model_copy(deep=True) for aid in self._annotation_ids(layout_id)]

    def update_annotation(self, annotation_id: str, **changes: Any) -> Annotation:
        """
        Raises:
            NotFound: If the annotation does not exist
            ValueError: On unknown fields
        """
        self._check_annotation_fields(changes)
        with self._lock:
            current = self._fetch_annotation(annotation_id)
            self._guard(annotation_id, current.layout_id)
            updated = self._changed_annotation(current, changes)
            self._annotations[annotation_id] = updated
            self._dispatch("on_updated", EntityType.ANNOTATION, annotation_id, current, updated)
            return updated.model_copy(deep=True)

    def delete_annotation(self, annotation_id: str) -> bool:
        with self._lock:
            annotation = self._annotations.get(annotation_id)
            if annotation is None:
                return False
            self._guard(annotation_id, annotation.layout_id)
            self.purge_annotation(annotation_id)
            return True

    def purge_annotation(self, annotation_id: str) -> Annotation:
        """Remove an annotation without cascade guard checks (cascade resolver only)."""
        with self._lock:
            annotation = self._annotations.pop(annotation_id)
            self._dispatch("on_deleted", EntityType.ANNOTATION, annotation_id, annotation)
            return annotation

    def save_annotations(self, layout_id: str, items: Iterable[Dict[str, Any]]) -> List[Annotation]:
        """Create or update several annotations of one layout at once.

        Items with an ``id`` update that annotation, items without one are
        created. Every item is validated before anything is written, so a
        bad item leaves the layout's annotations untouched.

        Raises:
            NotFound: If the layout or an updated annotation does not exist
            InvalidPlacement: If an updated annotation belongs to another layout
            ValueError: On unknown fields or invalid values
        """
        with self._lock:
            self._guard(layout_id)
            self._fetch(layout_id)

            staged: List[tuple] = []
            for item in items:
                fields = dict(item)
                annotation_id = fields.pop("id", None)
                self._check_annotation_fields(fields)
                if annotation_id is None:
                    new = Annotation(id=self._network._new_id(), layout_id=layout_id, **fields)
                    staged.append((None, new))
                    continue
                current = self._fetch_annotation(annotation_id)
                if current.layout_id != layout_id:
                    raise InvalidPlacement(
                        f"Annotation {annotation_id} belongs to layout {current.layout_id}, not {layout_id}",
                        annotation_id=annotation_id,
                        layout_id=layout_id,
                    )
                staged.append((current, self._changed_annotation(current, fields)))

            for old, new in staged:
                self._annotations[new.id] = new
                if old is None:
                    self._dispatch("on_created", EntityType.ANNOTATION, new.id, new)
                else:
                    self._dispatch("on_updated", EntityType.ANNOTATION, new.id, old, new)

            logger.info(f"Saved {len(staged)} annotations on layout {layout_id}")
            return [new.model_copy(deep=True) for _, new in staged]

    def delete_annotations(self, layout_id: str) -> int:
        """Delete every annotation of a layout; returns how many were removed."""
        with self._lock:
            self._guard(layout_id)
            self._fetch(layout_id)
            annotation_ids = self._annotation_ids(layout_id)
            for annotation_id in annotation_ids:
                self.purge_annotation(annotation_id)
            logger.info(f"Deleted {len(annotation_ids)} annotations from layout {layout_id}")
            return len(annotation_ids)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def create_snapshot(self, label: Optional[str] = None) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                timestamp=datetime.now(),
                state={
                    EntityType.LAYOUT: deepcopy(self._layouts),
                    EntityType.ANNOTATION: deepcopy(self._annotations),
                },
                label=label,
            )

    def restore_snapshot(self, snapshot: StoreSnapshot) -> None:
        with self._lock:
            self._layouts = deepcopy(snapshot.state[EntityType.LAYOUT])
            self._annotations = deepcopy(snapshot.state[EntityType.ANNOTATION])
            logger.debug(f"Restored layouts to snapshot: {snapshot.label or snapshot.timestamp}")
            self._dispatch("on_restored", self)

    # =========================================================================
    # File Persistence
    # =========================================================================

    def save_to_file(self, layout_id: str, project_path: Union[str, Path]) -> Path:
        """Save layout as ``{project_path}/layouts/{layout_id}.layout.json``.

        Raises:
            NotFound: If layout not found
        """
        with self._lock:
            layout = self.get_layout(layout_id)
            data = layout.to_dict(exclude_none=True)
            data["annotations"] = [
                a.to_dict() for a in self.list_annotations(layout_id)
            ]

        target_dir = Path(project_path) / LAYOUT_FILE_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / f"{layout_id}.layout.json"

        # Sorted keys for git-friendly diffs
        with open(file_path, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)

        logger.info(f"Saved layout to {file_path}")
        return file_path

    def load_from_file(self, project_path: Union[str, Path], layout_id: str) -> Layout:
        """Load a layout file into the store (replacing a layout with the same ID).

        The file is checked against the current hierarchy the same way
        ``create_layout`` checks its arguments. Positions of nodes that no
        longer exist, or that now belong to another site, are dropped. The
        file's annotations replace the layout's current ones.

        Raises:
            FileNotFoundError: If layout file not found
            NotFound: If the layout's site or floor no longer exists
            InvalidPlacement: If the layout's floor belongs to another site
        """
        file_path = Path(project_path) / LAYOUT_FILE_DIR / f"{layout_id}.layout.json"
        if not file_path.exists():
            raise FileNotFoundError(f"Layout file not found: {file_path}")

        with open(file_path, "r") as f:
            data = json.load(f)

        layout = self._dict_to_layout(data)
        annotations = [
            Annotation.model_validate({**item, "layout_id": layout.id})
            for item in data.get("annotations", [])
        ]

        with self._lock:
            self._guard(layout.id, layout.site_id, layout.floor_id)
            self._network.get_site(layout.site_id)
            if layout.floor_id:
                floor_site = self._network.site_id_of(EntityType.FLOOR, layout.floor_id)
                if floor_site != layout.site_id:
                    raise InvalidPlacement(
                        f"Floor {layout.floor_id} belongs to site {floor_site}, not {layout.site_id}",
                        floor_id=layout.floor_id,
                        site_id=layout.site_id,
                    )

            stale = [
                n for n in layout.positions
                if not self._network.exists(EntityType.NODE, n)
                or self._network.get_node(n).site_id != layout.site_id
            ]
            for node_id in stale:
                layout.positions.pop(node_id)
            if stale:
                logger.warning(f"Dropped {len(stale)} positions of missing or foreign nodes from layout {layout.id}")
                layout.touch()

            old = self._layouts.get(layout.id)
            self._layouts[layout.id] = layout
            if old is None:
                logger.debug(f"Loaded layout {layout.id} from file")
                self._dispatch("on_created", EntityType.LAYOUT, layout.id, layout)
            else:
                logger.debug(f"Updated layout {layout.id} from file")
                self._dispatch("on_updated", EntityType.LAYOUT, layout.id, old, layout)

            for annotation_id in self._annotation_ids(layout.id):
                self.purge_annotation(annotation_id)
            for annotation in annotations:
                if annotation.id in self._annotations:
                    self.purge_annotation(annotation.id)
                self._annotations[annotation.id] = annotation
                self._dispatch("on_created", EntityType.ANNOTATION, annotation.id, annotation)
            return deepcopy(layout)

    def _dict_to_layout(self, data: Dict[str, Any]) -> Layout:
        """Convert dictionary to Layout (positions may be stored as lists)."""
        positions = {}
        for node_id, pos in data.get("positions", {}).items():
            if isinstance(pos, list):
                positions[node_id] = NodePosition.from_list(pos)
            else:
                positions[node_id] = NodePosition(**pos)

        fields = {k: v for k, v in data.items() if k not in ("positions", "etag", "annotations")}
        return Layout(positions=positions, **fields)

    def __contains__(self, layout_id: str) -> bool:
        with self._lock:
            return layout_id in self._layouts

    def __len__(self) -> int:
        with self._lock:
            return len(self._layouts)


__all__ = [
    "LayoutStore",
    "LAYOUT_FILE_DIR",
]
