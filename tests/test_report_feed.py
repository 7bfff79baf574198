import json
import math
import pytest
import pandas as pd
import requests
from pathlib import Path
import sys

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from data.preprocessing import (
    normalize_clusters,
    normalize_reports,
    normalize_route,
    normalize_sub_clusters,
    report_positions,
    reports_from_frame,
    validate_feature_collection,
)
from data.report_feed import ReportFeed
from entities import Cluster, GeoFeature
from map_config import Settings, load_settings
from utils.exceptions import ConfigError, DataLoadError, SnapshotFormatError

BACKEND_REPORTS = [
    {
        '_id': 'r1',
        'name': 'Flooded street',
        'location_information': {'geometry': {'location': {'lat': 29.8, 'lng': -95.2}}},
        'overall': {'priority': 0.9},
    },
    {
        '_id': 'r2',
        'name': 'Tree down',
        'location_information': {'geometry': {'location': {'lat': 29.6, 'lng': -95.5}}},
        'overall': {'priority': 0.3},
    },
]

FIRESTATIONS = {
    'type': 'FeatureCollection',
    'features': [{
        'type': 'Feature',
        'geometry': {'type': 'Point', 'coordinates': [-95.4, 29.6]},
        'properties': {'name': 'Station 7'},
    }],
}


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding='utf-8')


class FakeResponse:
    def __init__(self, status_code, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON object could be decoded')
        return self._payload


class FakeHttp:
    """Serves queued responses per collection name."""

    def __init__(self, responses):
        self.responses = {name: list(queue) for name, queue in responses.items()}
        self.calls = []
        self.params = []

    def get(self, url, params=None, timeout=None):
        name = url.rsplit('/', 1)[-1]
        self.calls.append(name)
        self.params.append(params)
        queue = self.responses.get(name)
        if not queue:
            return FakeResponse(404)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def snapshot_dir(tmp_path):
    _write(tmp_path / 'reports.json', BACKEND_REPORTS)
    _write(tmp_path / 'clusters.json', [{'centroid': [-95.3, 29.75], 'reports': [{'_id': 'r1'}, 'r2'], 'overallPriority': 0.7}])
    _write(tmp_path / 'subclusters.json', [{'cluster': [[-95.3, 29.7], [-95.31, 29.71]]}, {'cluster': [[-95.1, 29.9]]}])
    _write(tmp_path / 'firestations.geojson', FIRESTATIONS)
    return tmp_path


@pytest.fixture
def api_settings():
    return Settings(api_url='http://backend.test/api/', request_timeout=5.0)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('data.report_feed.time.sleep', lambda seconds: None)


class TestNormalizeReports:
    def test_backend_records(self):
        df = normalize_reports(BACKEND_REPORTS)
        assert list(df.columns) == ['id', 'name', 'lat', 'lng', 'priority']
        assert df['id'].tolist() == ['r1', 'r2']
        assert df['lat'].tolist() == [29.8, 29.6]
        assert df['priority'].tolist() == [0.9, 0.3]

    def test_flat_records(self):
        df = normalize_reports([{'id': 7, 'name': 'Gas leak', 'location': {'lat': '29.7', 'lng': '-95.3'}, 'priority': 0.5}])
        report = reports_from_frame(df)[0]
        assert report.id == '7'
        assert (report.lat, report.lng) == (29.7, -95.3)

    def test_duplicates_dropped(self):
        df = normalize_reports(BACKEND_REPORTS + BACKEND_REPORTS[:1])
        assert len(df) == 2

    def test_missing_id_column(self):
        with pytest.raises(SnapshotFormatError):
            normalize_reports([{'name': 'No id'}])

    def test_empty(self):
        df = normalize_reports([])
        assert df.empty
        assert reports_from_frame(df) == ()
        assert report_positions(df) == ()

    def test_missing_priority_is_nan(self):
        df = normalize_reports([{'id': 'x', 'lat': 1.0, 'lng': 2.0}])
        assert math.isnan(df.loc[0, 'priority'])
        assert df.loc[0, 'name'] == ''

    def test_positions_skip_unusable_coordinates(self):
        df = normalize_reports([
            {'id': 'a', 'lat': 29.7, 'lng': -95.3},
            {'id': 'b', 'lat': 'unknown', 'lng': -95.3},
        ])
        assert report_positions(df) == ((-95.3, 29.7),)


class TestNormalizeCollections:
    def test_clusters(self):
        (cluster,) = normalize_clusters([{'centroid': [-95.3, 29.75], 'reports': [{'_id': 'r1'}, 'r2'], 'overallPriority': 0.7}])
        assert cluster.centroid == (-95.3, 29.75)
        assert cluster.reports == ('r1', 'r2')
        assert cluster.overall_priority == 0.7

    def test_cluster_without_centroid(self):
        with pytest.raises(SnapshotFormatError):
            normalize_clusters([{'reports': []}])

    def test_sub_clusters(self):
        assert normalize_sub_clusters(None) is None
        subs = normalize_sub_clusters([{'cluster': [[1, 2]]}, [[3, 4], [5, 6]], {'index': 9, 'points': []}])
        assert [s.index for s in subs] == [0, 1, 9]
        assert subs[1].points == ((3.0, 4.0), (5.0, 6.0))

    @pytest.mark.parametrize('raw', [
        [[-95.4, 29.6], [-95.3, 29.7]],
        {'type': 'LineString', 'coordinates': [[-95.4, 29.6], [-95.3, 29.7]]},
        {'type': 'Feature', 'geometry': {'type': 'LineString', 'coordinates': [[-95.4, 29.6], [-95.3, 29.7]]}},
        {'route': [[-95.4, 29.6], [-95.3, 29.7]]},
    ])
    def test_route_shapes(self, raw):
        assert normalize_route(raw) == ((-95.4, 29.6), (-95.3, 29.7))

    def test_bad_route(self):
        assert normalize_route(None) is None
        with pytest.raises(SnapshotFormatError):
            normalize_route([['a', 'b']])

    def test_feature_collection(self):
        assert validate_feature_collection(None, 'roads') is None
        assert validate_feature_collection(FIRESTATIONS, 'firestations') == FIRESTATIONS
        with pytest.raises(SnapshotFormatError):
            validate_feature_collection([1, 2], 'roads')


class TestLocalSnapshot:
    def test_load_snapshot(self, snapshot_dir):
        data = ReportFeed(Settings(data_dir=snapshot_dir)).load_snapshot()
        assert [r.id for r in data.reports] == ['r1', 'r2']
        assert data.report_positions == ((-95.2, 29.8), (-95.5, 29.6))
        assert data.clusters[0].report_count == 2
        assert len(data.sub_clusters) == 2
        assert data.firestations['features'][0]['properties']['name'] == 'Station 7'
        assert data.route is None
        assert data.buildings is None
        assert data.roads is None

    def test_parquet_reports(self, tmp_path):
        pd.DataFrame([{'id': 'p1', 'name': 'Parquet report', 'lat': 29.7, 'lng': -95.3, 'priority': 0.4}]).to_parquet(
            tmp_path / 'reports.parquet', engine='pyarrow', index=False
        )
        data = ReportFeed(Settings(data_dir=tmp_path)).load_snapshot()
        assert data.reports[0].name == 'Parquet report'
        assert data.clusters == ()
        assert data.sub_clusters is None

    def test_missing_reports(self, tmp_path):
        with pytest.raises(DataLoadError):
            ReportFeed(Settings(data_dir=tmp_path)).load_snapshot()

    def test_unreadable_file(self, snapshot_dir):
        (snapshot_dir / 'route.json').write_text('{not json', encoding='utf-8')
        with pytest.raises(DataLoadError):
            ReportFeed(Settings(data_dir=snapshot_dir)).load_snapshot()

    def test_load_route(self, snapshot_dir):
        feed = ReportFeed(Settings(data_dir=snapshot_dir))
        assert feed.load_route() is None
        _write(snapshot_dir / 'route.json', [[-95.4, 29.6], [-95.3, 29.75]])
        assert feed.load_route() == ((-95.4, 29.6), (-95.3, 29.75))


class TestApiSnapshot:
    def test_load_from_api(self, api_settings):
        feed = ReportFeed(api_settings, rate_limit=0)
        feed.http = FakeHttp({
            'reports': [FakeResponse(200, BACKEND_REPORTS)],
            'firestations': [FakeResponse(200, FIRESTATIONS)],
        })
        data = feed.load_snapshot()
        assert len(data.reports) == 2
        assert data.firestations == FIRESTATIONS
        assert data.clusters == ()
        assert 'roads' in feed.http.calls

    def test_retries_after_server_error(self, api_settings):
        feed = ReportFeed(api_settings, retries=3, rate_limit=0)
        feed.http = FakeHttp({'reports': [FakeResponse(500, text='boom'), FakeResponse(429), FakeResponse(200, BACKEND_REPORTS)]})
        assert len(feed.load_snapshot().reports) == 2
        assert feed.http.calls.count('reports') == 3

    def test_gives_up_after_retries(self, api_settings):
        feed = ReportFeed(api_settings, retries=2, rate_limit=0)
        feed.http = FakeHttp({'reports': [FakeResponse(503, text='unavailable')]})
        with pytest.raises(DataLoadError):
            feed.load_snapshot()

    def test_network_error(self, api_settings):
        feed = ReportFeed(api_settings, retries=2, rate_limit=0)
        feed.http = FakeHttp({'reports': [requests.exceptions.ConnectionError('refused')]})
        with pytest.raises(DataLoadError):
            feed.load_snapshot()

    def test_invalid_json(self, api_settings):
        feed = ReportFeed(api_settings, rate_limit=0)
        feed.http = FakeHttp({'reports': [FakeResponse(200, None)]})
        with pytest.raises(DataLoadError):
            feed.load_snapshot()

    def test_route_request_carries_endpoints(self, api_settings):
        feed = ReportFeed(api_settings, rate_limit=0)
        feed.http = FakeHttp({'route': [FakeResponse(200, {'type': 'LineString', 'coordinates': [[-95.4, 29.6], [-95.3, 29.75]]})]})
        origin = GeoFeature(geometry={'type': 'Point', 'coordinates': [-95.4, 29.6]}, properties={'name': 'Station 7'})
        destination = Cluster(centroid=(-95.3, 29.75), reports=('r1',), overall_priority=0.5)

        route = feed.load_route(origin, destination)

        assert route == ((-95.4, 29.6), (-95.3, 29.75))
        assert feed.http.params == [{'origin': '-95.400000,29.600000', 'destination': '-95.300000,29.750000'}]

    def test_each_pair_gets_its_own_request(self, api_settings):
        feed = ReportFeed(api_settings, rate_limit=0)
        feed.http = FakeHttp({'route': [FakeResponse(200, [[0, 0], [1, 1]])]})
        origin = GeoFeature(geometry={'type': 'Point', 'coordinates': [-95.4, 29.6]}, properties={'name': 'Station 7'})
        feed.load_route(origin, Cluster(centroid=(-95.3, 29.75), reports=(), overall_priority=0.5))
        feed.load_route(origin, Cluster(centroid=(-95.1, 29.9), reports=(), overall_priority=0.5))
        assert [p['destination'] for p in feed.http.params] == ['-95.300000,29.750000', '-95.100000,29.900000']

    def test_missing_reports_endpoint(self, api_settings):
        feed = ReportFeed(api_settings, rate_limit=0)
        feed.http = FakeHttp({})
        with pytest.raises(DataLoadError):
            feed.load_snapshot()


class TestSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        for name in ('INCIDENT_MAP_DATA_DIR', 'INCIDENT_MAP_API_URL', 'MAPBOX_API_KEY',
                     'INCIDENT_MAP_REQUEST_TIMEOUT', 'INCIDENT_MAP_LOG_DIR'):
            monkeypatch.delenv(name, raising=False)
        self.env_file = str(tmp_path / 'missing.env')

    def test_defaults(self):
        settings = load_settings(self.env_file)
        assert settings.api_url is None
        assert settings.request_timeout == 30.0
        assert settings.log_dir == 'logs'

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv('INCIDENT_MAP_DATA_DIR', str(tmp_path))
        monkeypatch.setenv('INCIDENT_MAP_API_URL', 'http://backend.test')
        monkeypatch.setenv('MAPBOX_API_KEY', 'pk.test')
        monkeypatch.setenv('INCIDENT_MAP_REQUEST_TIMEOUT', '12.5')
        settings = load_settings(self.env_file)
        assert settings.data_dir == tmp_path
        assert settings.api_url == 'http://backend.test'
        assert settings.mapbox_api_key == 'pk.test'
        assert settings.request_timeout == 12.5

    @pytest.mark.parametrize('timeout', ['soon', '0', '-3'])
    def test_bad_timeout(self, monkeypatch, timeout):
        monkeypatch.setenv('INCIDENT_MAP_REQUEST_TIMEOUT', timeout)
        with pytest.raises(ConfigError):
            load_settings(self.env_file)
