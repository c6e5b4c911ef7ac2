"""Orthogonal connector routing between two oriented anchor points.

The router is a fixed decision table over the (source side, target side)
pair, not a path search. Saved diagrams depend on the exact paths it
produces, so branches must not change shape.

Decision table (o = elbow_offset, m = midpoint):

    right -> left    two elbows at sx+o / tx-o, or midpoint route when they
                     would come within min_gap of each other
    left -> right    mirrored (sx-o / tx+o)
    bottom -> top    same on the Y axis (sy+o / ty-o), horizontal midpoint fallback
    top -> bottom    mirrored (sy-o / ty+o)
    perpendicular    single corner: (tx, sy) from a left/right source,
                     (sx, ty) from a top/bottom source
    anything else    midpoint route along the dominant axis

Example:
    >>> route_orthogonal((0, 0), "right", (200, 100), "left")
    'M 0 0 L 20 0 L 20 50 L 180 50 L 180 100 L 200 100'
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from synoptics.models.enums import Side
from synoptics.models.layout_metadata import EdgeSection, RouterConfig

Point = Tuple[float, float]

OPPOSING_PAIRS = {
    (Side.RIGHT, Side.LEFT),
    (Side.LEFT, Side.RIGHT),
    (Side.BOTTOM, Side.TOP),
    (Side.TOP, Side.BOTTOM),
}


@dataclass
class OrthogonalRoute:
    """Routed path as an ordered list of points plus the branch that produced it."""
    points: List[Point]
    branch: str

    @property
    def bend_points(self) -> List[Point]:
        return self.points[1:-1]

    def to_path(self) -> str:
        head, *rest = self.points
        return " ".join(
            [f"M {_fmt(head[0])} {_fmt(head[1])}"]
            + [f"L {_fmt(x)} {_fmt(y)}" for x, y in rest]
        )

    def to_edge_section(self) -> EdgeSection:
        return EdgeSection(
            start_point=self.points[0],
            end_point=self.points[-1],
            bend_points=self.bend_points,
        )


def _fmt(value: float) -> str:
    """Render integral numbers without a decimal part (100, not 100.0)."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _opposing(source: Point, target: Point, source_side: Side, config: RouterConfig) -> OrthogonalRoute:
    (sx, sy), (tx, ty) = source, target
    o = config.elbow_offset
    mx, my = sx + (tx - sx) / 2, sy + (ty - sy) / 2

    if source_side.is_horizontal:
        direction = 1 if source_side == Side.RIGHT else -1
        source_elbow, target_elbow = sx + direction * o, tx - direction * o
        if (target_elbow - source_elbow) * direction > config.min_gap:
            return OrthogonalRoute(
                [source, (source_elbow, sy), (source_elbow, my), (target_elbow, my),
                 (target_elbow, ty), target],
                "elbows",
            )
        return OrthogonalRoute([source, (mx, sy), (mx, ty), target], "midpoint")

    direction = 1 if source_side == Side.BOTTOM else -1
    source_elbow, target_elbow = sy + direction * o, ty - direction * o
    if (target_elbow - source_elbow) * direction > config.min_gap:
        return OrthogonalRoute(
            [source, (sx, source_elbow), (mx, source_elbow), (mx, target_elbow),
             (tx, target_elbow), target],
            "elbows",
        )
    return OrthogonalRoute([source, (sx, my), (tx, my), target], "midpoint")


def compute_route(
    source_point: Point,
    source_side: Union[Side, str],
    target_point: Point,
    target_side: Union[Side, str],
    config: Optional[RouterConfig] = None,
) -> OrthogonalRoute:
    """Route a connector from a source anchor to a target anchor.

    Args:
        source_point: (x, y) where the connector leaves the source node
        source_side: Side of the source node the connector leaves from
        target_point: (x, y) where the connector enters the target node
        target_side: Side of the target node the connector enters from
        config: Router tunables; defaults to RouterConfig()

    Returns:
        OrthogonalRoute with start, bend and end points
    """
    config = config or RouterConfig()
    source_side, target_side = Side(source_side), Side(target_side)
    source = (float(source_point[0]), float(source_point[1]))
    target = (float(target_point[0]), float(target_point[1]))
    (sx, sy), (tx, ty) = source, target

    if (source_side, target_side) in OPPOSING_PAIRS:
        return _opposing(source, target, source_side, config)

    if source_side.is_horizontal != target_side.is_horizontal:
        corner = (tx, sy) if source_side.is_horizontal else (sx, ty)
        return OrthogonalRoute([source, corner, target], "corner")

    dx, dy = tx - sx, ty - sy
    if abs(dx) > abs(dy):
        mx = sx + dx / 2
        return OrthogonalRoute([source, (mx, sy), (mx, ty), target], "default")
    my = sy + dy / 2
    return OrthogonalRoute([source, (sx, my), (tx, my), target], "default")


def route_orthogonal(
    source_point: Point,
    source_side: Union[Side, str],
    target_point: Point,
    target_side: Union[Side, str],
    config: Optional[RouterConfig] = None,
) -> str:
    """Path string ``"M x y L x y ..."`` for a connector (see ``compute_route``)."""
    return compute_route(source_point, source_side, target_point, target_side, config).to_path()


__all__ = [
    "Point",
    "OrthogonalRoute",
    "compute_route",
    "route_orthogonal",
]
