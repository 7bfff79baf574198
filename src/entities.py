"""Tagged geospatial entities shown on the map.

Every row handed to a layer carries a ``kind`` tag so picked objects can be
told apart without guessing from their fields. Objects coming back from the
renderer untagged (hexagon bins are aggregated client side) are classified
by shape, in a fixed precedence order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

LngLat = Tuple[float, float]


class EntityKind(str, Enum):
    HEX_BIN = 'hex_bin'
    REPORT = 'report'
    FEATURE = 'feature'
    CLUSTER = 'cluster'
    SUBCLUSTER_POINT = 'subcluster_point'
    ROUTE = 'route'


@dataclass(frozen=True)
class Report:
    id: str
    name: str
    lat: float
    lng: float
    priority: float

    kind = EntityKind.REPORT

    @property
    def position(self) -> LngLat:
        return (self.lng, self.lat)


@dataclass(frozen=True)
class Cluster:
    centroid: LngLat
    reports: Tuple[str, ...]
    overall_priority: float

    kind = EntityKind.CLUSTER

    @property
    def report_count(self) -> int:
        return len(self.reports)


@dataclass(frozen=True)
class SubCluster:
    index: int
    points: Tuple[LngLat, ...]


@dataclass(frozen=True)
class HexBin:
    """Aggregate bin as reported by the renderer on pick."""

    position: Tuple[Any, ...]
    points: Tuple[Any, ...] = ()

    kind = EntityKind.HEX_BIN

    @property
    def count(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class GeoFeature:
    """A GeoJSON feature (firestation, building or road)."""

    geometry: Mapping[str, Any]
    properties: Mapping[str, Any] = field(default_factory=dict)

    kind = EntityKind.FEATURE

    @property
    def name(self) -> Optional[str]:
        return self.properties.get('name')

    @property
    def anchor(self) -> Optional[LngLat]:
        """[lng, lat] of a Point geometry; None for lines and polygons."""
        if self.geometry.get('type') != 'Point':
            return None
        coords = self.geometry.get('coordinates') or ()
        if len(coords) < 2:
            return None
        return (float(coords[0]), float(coords[1]))


Entity = Any  # Report | Cluster | HexBin | GeoFeature


@dataclass(frozen=True)
class PickInfo:
    """A hover or click reported by the renderer: the picked object and pointer position."""

    object: Any = None
    x: Optional[float] = None
    y: Optional[float] = None
    layer_id: Optional[str] = None


def _has_name_property(obj: Mapping[str, Any]) -> bool:
    props = obj.get('properties')
    return isinstance(props, Mapping) and bool(props.get('name'))


def _report_from_row(obj: Mapping[str, Any]) -> Report:
    location = obj.get('location') or {}
    return Report(
        id=str(obj.get('id', '')),
        name=str(obj.get('name', '')),
        lat=location.get('lat'),
        lng=location.get('lng'),
        priority=obj.get('priority', 0.0),
    )


def _cluster_from_row(obj: Mapping[str, Any]) -> Cluster:
    reports = obj.get('reports') or ()
    return Cluster(
        centroid=tuple(obj.get('centroid') or ()),
        reports=tuple(reports),
        overall_priority=obj.get('overall_priority', obj.get('overallPriority', 0.0)),
    )


def _feature_from_row(obj: Mapping[str, Any]) -> GeoFeature:
    return GeoFeature(geometry=obj.get('geometry') or {}, properties=obj.get('properties') or {})


def _hexbin_from_row(obj: Mapping[str, Any]) -> HexBin:
    return HexBin(position=tuple(obj.get('position') or ()), points=tuple(obj.get('points') or ()))


_BUILDERS = {
    EntityKind.HEX_BIN: _hexbin_from_row,
    EntityKind.REPORT: _report_from_row,
    EntityKind.FEATURE: _feature_from_row,
    EntityKind.CLUSTER: _cluster_from_row,
}


def classify(obj: Any) -> Optional[Entity]:
    """Turn a picked object into a typed entity, or None if nothing matches.

    Typed entities pass through. Mappings with a known ``kind`` tag are built
    directly; untagged mappings are checked as hex bin, report, feature, cluster,
    and the first match wins.
    """
    if obj is None:
        return None
    if isinstance(obj, (Report, Cluster, HexBin, GeoFeature)):
        return obj
    if not isinstance(obj, Mapping):
        return None

    tag = obj.get('kind')
    if tag is not None:
        try:
            builder = _BUILDERS.get(EntityKind(tag))
        except ValueError:
            builder = None
        return builder(obj) if builder else None

    if 'position' in obj and 'points' in obj:
        return _hexbin_from_row(obj)
    if obj.get('name') and 'location' in obj:
        return _report_from_row(obj)
    if _has_name_property(obj):
        return _feature_from_row(obj)
    if 'reports' in obj:
        return _cluster_from_row(obj)
    return None
