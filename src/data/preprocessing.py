"""
Snapshot normalization for the incident map.

Turns the raw records served by the reports backend into the typed
entities the map consumes:

- reports: ``_id``/``name``/``location_information.geometry.location``/``overall.priority``
  (flat ``id``/``location.lat``/``location.lng``/``priority`` records are accepted too)
- clusters: ``{centroid, reports, overallPriority}``
- sub-clusters: k-means output ``[{cluster: [[lng, lat], ...]}, ...]``
- route: list of ``[lng, lat]`` vertices or a GeoJSON LineString
- firestations / buildings / roads: GeoJSON FeatureCollections
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from entities import Cluster, LngLat, Report, SubCluster
from utils.exceptions import SnapshotFormatError
from utils.logger_config import setup_logger

logger = setup_logger(__name__)

# Raw backend column -> canonical column, first match wins
REPORT_COLUMNS: Dict[str, Tuple[str, ...]] = {
    'id': ('_id', 'id'),
    'name': ('name',),
    'lat': ('location_information.geometry.location.lat', 'location.lat', 'lat', 'latitude'),
    'lng': ('location_information.geometry.location.lng', 'location.lng', 'lng', 'longitude'),
    'priority': ('overall.priority', 'priority'),
}


def _first_existing(df: pd.DataFrame, candidates: Iterable[str]) -> Optional[str]:
    for c in candidates:
        if c in df.columns:
            return c
    return None


def normalize_reports(records: Any) -> pd.DataFrame:
    """
    Flatten raw report records into a frame with columns id, name, lat, lng, priority

    Args:
    records (list[dict] | pd.DataFrame): Raw report records

    Returns:
    pd.DataFrame: One row per report, duplicates on id dropped

    Raises:
    SnapshotFormatError : Records have no id column or are not tabular
    """
    if isinstance(records, pd.DataFrame):
        # parquet snapshots are already flat
        raw = records.copy()
    else:
        try:
            raw = pd.json_normalize(list(records or []))
        except (TypeError, AttributeError) as e:
            raise SnapshotFormatError(f'Report records are not a list of objects : {str(e)}')

    if raw.empty:
        return pd.DataFrame(columns=list(REPORT_COLUMNS))

    out = pd.DataFrame(index=raw.index)
    for canonical, candidates in REPORT_COLUMNS.items():
        source = _first_existing(raw, candidates)
        if source is None:
            if canonical == 'id':
                raise SnapshotFormatError(f'Report records have no id column. Found {sorted(raw.columns)}')
            out[canonical] = np.nan if canonical != 'name' else ''
        else:
            out[canonical] = raw[source]

    out['id'] = out['id'].astype(str)
    out['name'] = out['name'].fillna('').astype(str)
    for col in ('lat', 'lng', 'priority'):
        out[col] = pd.to_numeric(out[col], errors='coerce')

    before = len(out)
    out = out.drop_duplicates(subset=['id'], keep='first').reset_index(drop=True)
    if len(out) != before:
        logger.warning(f'Dropped {before - len(out)} duplicate reports')
    logger.debug(f'Normalized {len(out)} reports')
    return out


def reports_from_frame(df: pd.DataFrame) -> Tuple[Report, ...]:
    return tuple(
        Report(id=row.id, name=row.name, lat=row.lat, lng=row.lng, priority=row.priority)
        for row in df.itertuples(index=False)
    )


def report_positions(df: pd.DataFrame) -> Tuple[LngLat, ...]:
    """[lng, lat] pairs for the aggregation layer; reports without finite coordinates are skipped."""
    if df.empty:
        return ()
    coords = df[['lng', 'lat']].to_numpy(dtype=float)
    mask = np.isfinite(coords).all(axis=1)
    skipped = int((~mask).sum())
    if skipped:
        logger.info(f'{skipped} reports have no usable coordinates and are left out of the heatmap')
    return tuple((float(lng), float(lat)) for lng, lat in coords[mask])


def _report_ref(ref: Any) -> str:
    if isinstance(ref, Mapping):
        return str(ref.get('_id', ref.get('id', '')))
    return str(ref)


def normalize_clusters(records: Optional[Iterable[Mapping[str, Any]]]) -> Tuple[Cluster, ...]:
    clusters: List[Cluster] = []
    for i, record in enumerate(records or []):
        centroid = record.get('centroid')
        if not isinstance(centroid, (list, tuple)) or len(centroid) < 2:
            raise SnapshotFormatError(f'Cluster {i} has no [lng, lat] centroid')
        clusters.append(Cluster(
            centroid=(float(centroid[0]), float(centroid[1])),
            reports=tuple(_report_ref(r) for r in record.get('reports') or []),
            overall_priority=record.get('overallPriority', record.get('overall_priority', 0.0)),
        ))
    return tuple(clusters)


def normalize_sub_clusters(records: Optional[Iterable[Any]]) -> Optional[Tuple[SubCluster, ...]]:
    """None stays None: no k-means run yet means no sub-cluster layers."""
    if records is None:
        return None
    subs: List[SubCluster] = []
    for i, record in enumerate(records):
        if isinstance(record, Mapping):
            index = int(record.get('index', i))
            points = record.get('points', record.get('cluster')) or []
        else:
            index, points = i, record
        subs.append(SubCluster(index=index, points=tuple((float(p[0]), float(p[1])) for p in points)))
    return tuple(subs)


def normalize_route(raw: Any) -> Optional[Tuple[LngLat, ...]]:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        if raw.get('type') == 'LineString':
            raw = raw.get('coordinates')
        elif raw.get('type') == 'Feature':
            raw = (raw.get('geometry') or {}).get('coordinates')
        else:
            raw = raw.get('route')
    if raw is None:
        return None
    try:
        return tuple((float(v[0]), float(v[1])) for v in raw)
    except (TypeError, ValueError, IndexError) as e:
        raise SnapshotFormatError(f'Route is not a list of [lng, lat] vertices : {str(e)}')


def validate_feature_collection(raw: Any, name: str) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping) or raw.get('type') != 'FeatureCollection':
        raise SnapshotFormatError(f'{name} is not a GeoJSON FeatureCollection')
    return dict(raw)
