"""Constants and environment settings for the incident map console.

Palettes are immutable tuples indexed by bucket; layer constants keep the
deck.gl parameter values the dashboard has always shipped with.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from utils.exceptions import ConfigError

ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / 'data'

RGB = Tuple[int, int, int]
RGBA = Tuple[int, int, int, int]

# Cold-to-warm palette for hexagon bins, ordered by count percentile.
COLOR_RANGE: Tuple[RGB, ...] = (
    (1, 152, 189),
    (73, 227, 206),
    (216, 254, 181),
    (254, 237, 177),
    (254, 173, 84),
    (209, 55, 78),
)

# Priority palette shared by report and cluster scatterplots. Alpha grows with the bucket.
SCATTERPLOT_COLOR_RANGE: Tuple[RGBA, ...] = (
    (255, 255, 178, 25),
    (254, 217, 118, 85),
    (254, 178, 76, 127),
    (253, 141, 60, 170),
    (240, 59, 32, 212),
    (189, 0, 38, 255),
)

SUBCLUSTER_COLORS: Tuple[RGB, ...] = (
    (230, 25, 75),
    (60, 180, 75),
    (255, 225, 25),
    (0, 130, 200),
    (245, 130, 48),
    (145, 30, 180),
    (70, 240, 240),
    (240, 50, 230),
    (210, 245, 60),
    (250, 190, 190),
    (0, 128, 128),
    (230, 190, 255),
    (170, 110, 40),
    (255, 250, 200),
    (128, 0, 0),
    (170, 255, 195),
    (128, 128, 0),
    (255, 215, 180),
    (0, 0, 128),
    (128, 128, 128),
    (255, 255, 255),
    (0, 0, 0),
)

MAX_BUCKET = len(SCATTERPLOT_COLOR_RANGE) - 1

DAMAGE_NONE_COLOR: RGBA = (0, 255, 0, 100)
DAMAGE_MINOR_COLOR: RGBA = (255, 255, 0, 150)
DAMAGE_SEVERE_COLOR: RGBA = (255, 0, 0, 255)

FIRESTATION_FILL: RGBA = (50, 50, 240, 255)
FIRESTATION_LINE: RGBA = (255, 255, 255, 255)
ROUTE_COLOR: RGBA = (255, 0, 0, 255)
BUILDING_LINE: RGBA = (255, 255, 255, 200)
ROAD_LINE: RGBA = (0, 255, 255, 200)
POINT_LINE: RGB = (0, 0, 0)

HEX_RADIUS_M = 200
# Resolution 9 cells have ~174 m edges, the closest H3 size to HEX_RADIUS_M.
HEX_RESOLUTION = 9
HEX_ELEVATION_RANGE = (0, 500)
# Bins whose count falls outside these count percentiles are hidden.
HEX_PERCENTILE_WINDOW = (0, 100)

HEXAGON_PARAMS: Dict[str, object] = {
    'elevation_scale': 10,
    'extruded': True,
    'coverage': 0.7,
    'opacity': 1,
}

MATERIAL: Dict[str, object] = {
    'ambient': 0.64,
    'diffuse': 0.6,
    'shininess': 32,
    'specularColor': [51, 51, 51],
}

LIGHTING_EFFECT: Dict[str, object] = {
    '@@type': 'LightingEffect',
    'ambientLight': {'@@type': 'AmbientLight', 'color': [255, 255, 255], 'intensity': 1.0},
    'pointLight1': {
        '@@type': 'PointLight',
        'color': [255, 255, 255],
        'intensity': 0.8,
        'position': [-95.51925, 29.57602, 80000],
    },
    'pointLight2': {
        '@@type': 'PointLight',
        'color': [255, 255, 255],
        'intensity': 0.8,
        'position': [-95.15665, 30.06671, 8000],
    },
}

HOME_VIEW = {
    'longitude': -95.3428485221802,
    'latitude': 29.7298513221863,
    'zoom': 9.27,
    'min_zoom': 0,
    'max_zoom': 15,
    'pitch': 40.5,
    'bearing': -27.396674584323023,
}

SELECTION_ZOOM = 14
SELECTION_PITCH = 40.5
SELECTION_BEARING = -27.396674584323023
TRANSITION_DURATION_MS = 500

NOTIFICATION_PLACEMENT = 'bottomRight'
NOTIFICATION_DURATION_S = 2

DEFAULT_MAP_STYLE = 'mapbox://styles/pluscubed/cjyi8b2lh06p81cmd0awqozo0'
MAP_STYLES: Dict[str, str] = {
    'Normal': DEFAULT_MAP_STYLE,
    'Satellite': 'mapbox://styles/mapbox/satellite-v9',
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from the environment (and a .env file if present)."""

    data_dir: Path = DATA_DIR
    api_url: Optional[str] = None
    mapbox_api_key: Optional[str] = None
    request_timeout: float = 30.0
    log_dir: str = 'logs'


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)
    raw_timeout = os.getenv('INCIDENT_MAP_REQUEST_TIMEOUT', '30')
    try:
        timeout = float(raw_timeout)
    except ValueError:
        raise ConfigError(f'INCIDENT_MAP_REQUEST_TIMEOUT must be a number, got {raw_timeout!r}')
    if timeout <= 0:
        raise ConfigError(f'INCIDENT_MAP_REQUEST_TIMEOUT must be positive, got {timeout}')

    data_dir = os.getenv('INCIDENT_MAP_DATA_DIR')
    return Settings(
        data_dir=Path(data_dir) if data_dir else DATA_DIR,
        api_url=os.getenv('INCIDENT_MAP_API_URL') or None,
        mapbox_api_key=os.getenv('MAPBOX_API_KEY') or None,
        request_timeout=timeout,
        log_dir=os.getenv('INCIDENT_MAP_LOG_DIR', 'logs'),
    )
