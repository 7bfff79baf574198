"""Mode-dependent layer composition.

``compose`` turns (mode, toggles, data) into an ordered list of
``LayerSpec`` descriptions for deck.gl. It never mutates its inputs and two
calls with equal inputs return equal lists: click handlers are small frozen
dataclasses, so they compare by the callbacks they wrap.

Layer order per mode (back to front):
    Reports:  heatmap -> scatterplot-pts
    Clusters: scatterplot -> scatterplot-cluster{i}...
    Triage:   firestations -> path -> scatterplot -> buildings -> roads
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import h3
import numpy as np
import pandas as pd

from color_policy import by_overall_priority, by_priority, count_buckets, damage_color, subcluster_color
from entities import Cluster, EntityKind, GeoFeature, LngLat, PickInfo, Report, SubCluster, classify
from map_config import (
    BUILDING_LINE,
    COLOR_RANGE,
    FIRESTATION_FILL,
    FIRESTATION_LINE,
    HEXAGON_PARAMS,
    HEX_ELEVATION_RANGE,
    HEX_PERCENTILE_WINDOW,
    HEX_RESOLUTION,
    MATERIAL,
    NOTIFICATION_DURATION_S,
    NOTIFICATION_PLACEMENT,
    POINT_LINE,
    ROAD_LINE,
    ROUTE_COLOR,
)
from mode_state import Mode, Toggles

logger = logging.getLogger(__name__)

HEATMAP_ID = 'heatmap'
REPORTS_ID = 'scatterplot-pts'
CLUSTERS_ID = 'scatterplot'
SUBCLUSTER_ID_PREFIX = 'scatterplot-cluster'
FIRESTATIONS_ID = 'firestations-layer'
ROUTE_ID = 'path-layer'
BUILDINGS_ID = 'buildings-layer'
ROADS_ID = 'roads-layer'


# ═══════════════════════════════════════════════════════════════════════════════
# Inputs and outputs
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class MapData:
    """One snapshot of every collection the map can draw.

    Optional collections are ``None`` when they have not been produced yet;
    their layers are then left out.
    """

    reports: Tuple[Report, ...] = ()
    report_positions: Optional[Tuple[LngLat, ...]] = None
    clusters: Tuple[Cluster, ...] = ()
    sub_clusters: Optional[Tuple[SubCluster, ...]] = None
    firestations: Optional[Mapping[str, Any]] = None
    route: Optional[Tuple[LngLat, ...]] = None
    buildings: Optional[Mapping[str, Any]] = None
    roads: Optional[Mapping[str, Any]] = None

    def positions(self) -> Tuple[LngLat, ...]:
        if self.report_positions is not None:
            return self.report_positions
        return tuple(r.position for r in self.reports)


@dataclass(frozen=True)
class Notification:
    placement: str
    message: str
    description: str
    key: Any
    duration_seconds: float = NOTIFICATION_DURATION_S


@dataclass(frozen=True)
class LayerCallbacks:
    on_hover: Optional[Callable[[PickInfo], Any]] = None
    on_select_point: Optional[Callable[[str], Any]] = None
    on_select_fire_station: Optional[Callable[[GeoFeature], Any]] = None
    on_select_cluster: Optional[Callable[[Cluster], Any]] = None
    notify: Optional[Callable[[Notification], Any]] = None


@dataclass(frozen=True)
class LayerSpec:
    """Renderer-independent description of one deck.gl layer.

    ``props`` use pydeck keyword names; string accessors refer to row fields.
    """

    id: str
    type: str
    data: Any
    props: Dict[str, Any] = field(default_factory=dict)
    on_click: Optional[Callable[[PickInfo], Any]] = None
    on_hover: Optional[Callable[[PickInfo], Any]] = None

    @property
    def pickable(self) -> bool:
        return bool(self.props.get('pickable'))


# ═══════════════════════════════════════════════════════════════════════════════
# Click handlers
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SelectReport:
    on_select_point: Optional[Callable[[str], Any]] = None

    def __call__(self, info: PickInfo) -> None:
        report = classify(info.object)
        if isinstance(report, Report) and self.on_select_point:
            self.on_select_point(report.id)


@dataclass(frozen=True)
class SelectFireStation:
    """Marks a firestation as the route origin."""

    notify: Optional[Callable[[Notification], Any]] = None
    on_select: Optional[Callable[[GeoFeature], Any]] = None

    def __call__(self, info: PickInfo) -> Optional[Notification]:
        feature = classify(info.object)
        if not isinstance(feature, GeoFeature):
            return None
        notification = Notification(
            placement=NOTIFICATION_PLACEMENT,
            message='Origin selected',
            description=feature.name,
            key=feature.name,
        )
        if self.notify:
            self.notify(notification)
        if self.on_select:
            self.on_select(feature)
        return notification


@dataclass(frozen=True)
class SelectCluster:
    """Marks a cluster as the route destination."""

    notify: Optional[Callable[[Notification], Any]] = None
    on_select: Optional[Callable[[Cluster], Any]] = None

    def __call__(self, info: PickInfo) -> Optional[Notification]:
        cluster = classify(info.object)
        if not isinstance(cluster, Cluster):
            return None
        notification = Notification(
            placement=NOTIFICATION_PLACEMENT,
            message='Destination selected',
            description=f'Cluster - {cluster.report_count} reports',
            key=cluster.report_count,
        )
        if self.notify:
            self.notify(notification)
        if self.on_select:
            self.on_select(cluster)
        return notification


# ═══════════════════════════════════════════════════════════════════════════════
# Row builders
# ═══════════════════════════════════════════════════════════════════════════════


def report_row(report: Report) -> Dict[str, Any]:
    return {
        'kind': EntityKind.REPORT.value,
        'id': report.id,
        'name': report.name,
        'location': {'lat': report.lat, 'lng': report.lng},
        'position': [report.lng, report.lat],
        'priority': report.priority,
        'fill_color': list(by_priority(report.priority)),
    }


def cluster_row(cluster: Cluster) -> Dict[str, Any]:
    return {
        'kind': EntityKind.CLUSTER.value,
        'centroid': list(cluster.centroid),
        'reports': list(cluster.reports),
        'report_count': cluster.report_count,
        'overall_priority': cluster.overall_priority,
        'radius': math.sqrt(cluster.report_count),
        'fill_color': list(by_overall_priority(cluster.overall_priority)),
    }


def _tag_features(collection: Optional[Mapping[str, Any]], fill=None) -> Dict[str, Any]:
    """Copy a FeatureCollection, tagging each feature (and optionally its fill color)."""
    features = []
    for feature in (collection or {}).get('features', []):
        properties = dict(feature.get('properties') or {})
        if fill is not None:
            properties['fill_color'] = list(fill(properties))
        tagged = dict(feature)
        tagged['kind'] = EntityKind.FEATURE.value
        tagged['properties'] = properties
        features.append(tagged)
    return {'type': 'FeatureCollection', 'features': features}


def _damage_fill(properties: Mapping[str, Any]):
    return damage_color(properties.get('damageLevel', properties.get('damageleve')))


# ═══════════════════════════════════════════════════════════════════════════════
# Layers
# ═══════════════════════════════════════════════════════════════════════════════


def _point_props(radius_scale: float) -> Dict[str, Any]:
    return {
        'pickable': True,
        'opacity': 0.8,
        'stroked': False,
        'filled': True,
        'radius_scale': radius_scale,
        'radius_min_pixels': 1,
        'radius_max_pixels': 100,
        'line_width_min_pixels': 1,
        'get_line_color': list(POINT_LINE),
    }


def hex_bin_rows(positions: Sequence[LngLat]) -> List[Dict[str, Any]]:
    """Aggregate report positions into H3 cells, one row per visible bin, ordered by cell id.

    Bins are colored by quantized count over COLOR_RANGE and their elevation is
    the count scaled linearly onto HEX_ELEVATION_RANGE.
    """
    df = pd.DataFrame(list(positions), columns=['lng', 'lat'], dtype=float)
    df = df[np.isfinite(df).all(axis=1)].copy()
    if df.empty:
        return []
    df['hex'] = [h3.latlng_to_cell(lat, lng, HEX_RESOLUTION) for lng, lat in zip(df['lng'], df['lat'])]

    counts = df.groupby('hex', sort=True).size().rename('count')
    lower, upper = HEX_PERCENTILE_WINDOW
    lo_q, hi_q = counts.quantile([lower / 100, upper / 100])
    counts = counts[(counts >= lo_q) & (counts <= hi_q)]

    buckets = count_buckets(counts)
    lo, hi = counts.min(), counts.max()
    if hi > lo:
        scale = (counts - lo) / (hi - lo)
    else:
        scale = pd.Series(1.0, index=counts.index)
    bottom, top = HEX_ELEVATION_RANGE
    elevation = bottom + (top - bottom) * scale

    rows = []
    for cell, group in df.groupby('hex', sort=True):
        if cell not in counts.index:
            continue
        lat, lng = h3.cell_to_latlng(cell)
        rows.append({
            'kind': EntityKind.HEX_BIN.value,
            'hex': cell,
            'position': [lng, lat],
            'points': group[['lng', 'lat']].to_numpy().tolist(),
            'count': int(counts[cell]),
            'elevation': float(elevation[cell]),
            'fill_color': list(COLOR_RANGE[buckets[cell]]),
        })
    return rows


def heatmap_layer(data: MapData, callbacks: LayerCallbacks) -> LayerSpec:
    props = dict(HEXAGON_PARAMS)
    props.update({
        'get_hexagon': 'hex',
        'get_elevation': 'elevation',
        'get_fill_color': 'fill_color',
        'pickable': True,
        'material': dict(MATERIAL),
    })
    return LayerSpec(HEATMAP_ID, 'H3HexagonLayer', hex_bin_rows(data.positions()), props, on_hover=callbacks.on_hover)


def report_layer(data: MapData, callbacks: LayerCallbacks) -> LayerSpec:
    props = _point_props(radius_scale=6)
    props.update({'get_position': 'position', 'get_radius': 10, 'get_fill_color': 'fill_color'})
    return LayerSpec(
        REPORTS_ID,
        'ScatterplotLayer',
        [report_row(r) for r in data.reports],
        props,
        on_click=SelectReport(callbacks.on_select_point),
        on_hover=callbacks.on_hover,
    )


def cluster_layer(data: MapData, callbacks: LayerCallbacks, on_click=None) -> LayerSpec:
    props = _point_props(radius_scale=100)
    props.update({'get_position': 'centroid', 'get_radius': 'radius', 'get_fill_color': 'fill_color'})
    return LayerSpec(
        CLUSTERS_ID,
        'ScatterplotLayer',
        [cluster_row(c) for c in data.clusters],
        props,
        on_click=on_click,
        on_hover=callbacks.on_hover,
    )


def subcluster_layers(data: MapData, callbacks: LayerCallbacks) -> List[LayerSpec]:
    layers = []
    for sub in data.sub_clusters or ():
        props = _point_props(radius_scale=6)
        props.update({
            'get_position': 'position',
            'get_radius': 10,
            'get_fill_color': list(subcluster_color(sub.index)),
        })
        rows = [{'kind': EntityKind.SUBCLUSTER_POINT.value, 'position': [lng, lat]} for lng, lat in sub.points]
        layers.append(LayerSpec(
            f'{SUBCLUSTER_ID_PREFIX}{sub.index}',
            'ScatterplotLayer',
            rows,
            props,
            on_hover=callbacks.on_hover,
        ))
    return layers


def _geojson_props(**overrides: Any) -> Dict[str, Any]:
    props = {
        'stroked': False,
        'filled': True,
        'extruded': False,
        'line_width_scale': 20,
        'line_width_min_pixels': 2,
        'get_point_radius': 500,
        'get_line_width': 1,
        'get_elevation': 30,
    }
    props.update(overrides)
    return props


def firestation_layer(data: MapData, callbacks: LayerCallbacks) -> LayerSpec:
    props = _geojson_props(
        pickable=True,
        extruded=True,
        get_fill_color=list(FIRESTATION_FILL),
        get_line_color=list(FIRESTATION_LINE),
    )
    return LayerSpec(
        FIRESTATIONS_ID,
        'GeoJsonLayer',
        _tag_features(data.firestations),
        props,
        on_click=SelectFireStation(callbacks.notify, callbacks.on_select_fire_station),
        on_hover=callbacks.on_hover,
    )


def route_layer(data: MapData) -> LayerSpec:
    props = {
        'pickable': True,
        'width_scale': 20,
        'width_min_pixels': 2,
        'get_path': 'path',
        'get_color': list(ROUTE_COLOR),
        'get_width': 5,
    }
    rows = [{'kind': EntityKind.ROUTE.value, 'path': [[lng, lat] for lng, lat in data.route]}]
    return LayerSpec(ROUTE_ID, 'PathLayer', rows, props)


def buildings_layer(data: MapData) -> LayerSpec:
    props = _geojson_props(
        pickable=False,
        get_fill_color='properties.fill_color',
        get_line_color=list(BUILDING_LINE),
    )
    return LayerSpec(BUILDINGS_ID, 'GeoJsonLayer', _tag_features(data.buildings, fill=_damage_fill), props)


def roads_layer(data: MapData) -> LayerSpec:
    props = _geojson_props(
        pickable=False,
        stroked=True,
        filled=False,
        get_line_color=list(ROAD_LINE),
    )
    return LayerSpec(ROADS_ID, 'GeoJsonLayer', _tag_features(data.roads), props)


# ═══════════════════════════════════════════════════════════════════════════════
# Composition
# ═══════════════════════════════════════════════════════════════════════════════


def _compose_reports(toggles: Toggles, data: MapData, callbacks: LayerCallbacks) -> List[LayerSpec]:
    layers = []
    if toggles.hexagon_on:
        layers.append(heatmap_layer(data, callbacks))
    if toggles.scatterplot_on:
        layers.append(report_layer(data, callbacks))
    return layers


def _compose_clusters(data: MapData, callbacks: LayerCallbacks) -> List[LayerSpec]:
    return [cluster_layer(data, callbacks)] + subcluster_layers(data, callbacks)


def _compose_triage(data: MapData, callbacks: LayerCallbacks) -> List[LayerSpec]:
    layers = [firestation_layer(data, callbacks)]
    if data.route is not None:
        layers.append(route_layer(data))
    layers.append(cluster_layer(
        data,
        callbacks,
        on_click=SelectCluster(callbacks.notify, callbacks.on_select_cluster),
    ))
    if data.buildings is not None:
        layers.append(buildings_layer(data))
    if data.roads is not None:
        layers.append(roads_layer(data))
    return layers


def compose(
    mode: Any,
    toggles: Optional[Toggles],
    data: MapData,
    callbacks: Optional[LayerCallbacks] = None,
) -> List[LayerSpec]:
    """Build the ordered layer list for ``mode``.

    Args:
        mode: A ``Mode`` or its raw value ('1', '2', '3'). Anything else yields [].
        toggles: Reports-mode switches; ignored by the other modes.
        data: Snapshot of the map collections.
        callbacks: Click/hover targets wired into the emitted layers.

    Returns:
        Layers ordered back to front.
    """
    parsed = Mode.parse(mode)
    callbacks = callbacks or LayerCallbacks()
    toggles = toggles or Toggles()

    if parsed is Mode.REPORTS:
        return _compose_reports(toggles, data, callbacks)
    if parsed is Mode.CLUSTERS:
        return _compose_clusters(data, callbacks)
    if parsed is Mode.TRIAGE:
        return _compose_triage(data, callbacks)

    logger.debug('No layers for unknown mode %r', mode)
    return []
