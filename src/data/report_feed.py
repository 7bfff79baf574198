"""
Incident Report Snapshot Feed.

Loads the collections the map draws (reports, clusters, k-means sub-clusters,
firestations, route, buildings, roads) either from a snapshot directory or
from the reports backend over HTTP. Clustering, routing and geocoding happen
upstream; this module only fetches and normalizes their results.

Snapshot directory layout:
    reports.json | reports.parquet
    clusters.json
    subclusters.json
    firestations.geojson
    route.json
    buildings.geojson
    roads.geojson

Only reports are required. Any other file that is missing leaves its
collection empty (clusters) or None (everything else).
"""

import json
import time
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import requests

from data.preprocessing import (
    normalize_clusters,
    normalize_reports,
    normalize_route,
    normalize_sub_clusters,
    report_positions,
    reports_from_frame,
    validate_feature_collection,
)
from entities import Cluster, GeoFeature
from layer_composer import MapData
from map_config import Settings, load_settings
from utils.exceptions import DataLoadError
from utils.logger_config import setup_logger

logger = setup_logger(__name__)

SNAPSHOT_FILES = {
    'reports': ('reports.parquet', 'reports.json'),
    'clusters': ('clusters.json',),
    'subclusters': ('subclusters.json',),
    'firestations': ('firestations.geojson', 'firestations.json'),
    'route': ('route.json',),
    'buildings': ('buildings.geojson', 'buildings.json'),
    'roads': ('roads.geojson', 'roads.json'),
}


class ReportFeed:
    """
    Fetches a map snapshot from disk or from the reports API.

    Attributes:
        settings (Settings): Where to read from (data_dir, api_url) and the request timeout
        retries (int): Attempts per HTTP request
        rate_limit (float): Base backoff between attempts in seconds

    Example:
        >>> feed = ReportFeed(load_settings())
        >>> data = feed.load_snapshot()
    """

    def __init__(self, settings: Optional[Settings] = None, retries: int = 3, rate_limit: float = 1.0) -> None:
        self.settings = settings or load_settings()
        self.retries = retries
        self.rate_limit = rate_limit
        self.http = requests.Session()

    # === Sources ===

    def _read_local(self, name: str) -> Any:
        """
        Read one snapshot collection from the data directory

        Returns:
            Parsed JSON, a DataFrame for parquet reports, or None if no file exists
        """
        for filename in SNAPSHOT_FILES[name]:
            path = Path(self.settings.data_dir) / filename
            if not path.exists():
                continue
            logger.debug(f'Reading {path}')
            try:
                if path.suffix == '.parquet':
                    return pd.read_parquet(path, engine='pyarrow')
                with open(path, encoding='utf-8') as fh:
                    return json.load(fh)
            except (OSError, ValueError) as e:
                logger.error(f'Failed to read {path} : {str(e)}')
                raise DataLoadError(f'Failed to read {path} : {str(e)}')
        return None

    def _fetch(self, name: str, params: Optional[dict] = None) -> Any:
        """
        GET {api_url}/{name} with retry logic.

        A 404 means the backend has not produced that collection yet and returns None.

        Raises:
            DataLoadError : Network failure after all retries, or a non-JSON body
        """
        url = f"{self.settings.api_url.rstrip('/')}/{name}"

        for attempt in range(self.retries):
            try:
                logger.debug(f'Requesting: {url}')
                response = self.http.get(url, params=params, timeout=self.settings.request_timeout)

                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise DataLoadError(f'{url} returned invalid JSON : {str(e)}')
                elif response.status_code == 404:
                    logger.info(f'{name} not available yet')
                    return None
                elif response.status_code == 429:  # Rate limit
                    wait_time = min((attempt + 1) * self.rate_limit * 2, 60)
                    logger.warning(f'Rate Limit Exceeded, waiting for {wait_time}s')
                    time.sleep(wait_time)
                else:
                    logger.error(f'Request failed with status {response.status_code}: {response.text}')
                    time.sleep(self.rate_limit * (attempt + 1))  # Progressive backoff

            except requests.exceptions.RequestException as e:
                logger.error(f'Network error (attempt {attempt + 1}): {str(e)}')
                if attempt == self.retries - 1:
                    raise DataLoadError(f'Network error after {self.retries} attempts: {str(e)}')
                time.sleep(self.rate_limit * (attempt + 1))

        raise DataLoadError(f'Failed to get {name} from {url} after {self.retries} attempts')

    def _get(self, name: str) -> Any:
        if self.settings.api_url:
            return self._fetch(name)
        return self._read_local(name)

    # === Snapshot ===

    def load_snapshot(self) -> MapData:
        """
        Load every collection and normalize it into a MapData snapshot

        Raises:
            DataLoadError : Reports are missing or a source could not be read
            SnapshotFormatError : A collection is malformed
        """
        source = self.settings.api_url or self.settings.data_dir
        logger.info(f'Loading map snapshot from {source}')

        raw_reports = self._get('reports')
        if raw_reports is None:
            raise DataLoadError(f'No reports found in {source}')

        reports_df = normalize_reports(raw_reports)
        data = MapData(
            reports=reports_from_frame(reports_df),
            report_positions=report_positions(reports_df),
            clusters=normalize_clusters(self._get('clusters')),
            sub_clusters=normalize_sub_clusters(self._get('subclusters')),
            firestations=validate_feature_collection(self._get('firestations'), 'firestations'),
            route=normalize_route(self._get('route')),
            buildings=validate_feature_collection(self._get('buildings'), 'buildings'),
            roads=validate_feature_collection(self._get('roads'), 'roads'),
        )
        logger.info(
            f'Snapshot ready: {len(data.reports)} reports, {len(data.clusters)} clusters, '
            f'route={"yes" if data.route else "no"}'
        )
        return data

    def load_route(self, origin: Optional[GeoFeature] = None, destination: Optional[Cluster] = None) -> Optional[tuple]:
        """
        Fetch the route from a firestation to a cluster centroid

        Against the API the endpoints go out as ``origin``/``destination`` query
        parameters ("lng,lat"); a snapshot directory only has its precomputed route.json.

        Raises:
            DataLoadError : The route could not be fetched
        """
        params = {}
        if origin is not None and origin.anchor is not None:
            params['origin'] = _lnglat_param(origin.anchor)
        if destination is not None:
            params['destination'] = _lnglat_param(destination.centroid)
        if self.settings.api_url:
            logger.info(f'Requesting route {params}')
            return normalize_route(self._fetch('route', params=params or None))
        return normalize_route(self._read_local('route'))


def _lnglat_param(position) -> str:
    return f'{float(position[0]):.6f},{float(position[1]):.6f}'


def load_snapshot(settings: Optional[Settings] = None) -> MapData:
    return ReportFeed(settings).load_snapshot()
