"""pydeck adapter: LayerSpec / ViewState in, pdk objects out.

Python callbacks cannot travel to the browser, so the adapter bakes hover
text into each row (``tooltip``) and maps Streamlit selection events back
to the originating layer's click handler.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pydeck as pdk

from entities import classify
from hover_resolver import describe
from layer_composer import LayerSpec
from map_session import MapSession
from map_config import LIGHTING_EFFECT
from viewport import ViewState

TOOLTIP = {
    'html': '{tooltip}',
    'style': {'backgroundColor': 'rgba(20, 20, 20, 0.85)', 'color': 'white', 'whiteSpace': 'pre-line'},
}


def _with_tooltip(row: Any, mode: Any) -> Any:
    """Copy of ``row`` carrying its hover text; rows without one get an empty string."""
    if not isinstance(row, Mapping):
        return row
    lines = describe(classify(row), mode)
    out = dict(row)
    out['tooltip'] = '<br/>'.join(lines) if lines else ''
    return out


def layer_data(spec: LayerSpec, mode: Any) -> Any:
    """Layer rows with tooltip text attached; the LayerSpec itself is left untouched."""
    if not spec.pickable:
        return spec.data
    data = spec.data
    if isinstance(data, Mapping) and data.get('type') == 'FeatureCollection':
        out = copy.copy(dict(data))
        out['features'] = [_with_tooltip(f, mode) for f in data.get('features', [])]
        return out
    if isinstance(data, list):
        return [_with_tooltip(row, mode) for row in data]
    return data


def to_pydeck_layer(spec: LayerSpec, mode: Any) -> pdk.Layer:
    return pdk.Layer(spec.type, layer_data(spec, mode), id=spec.id, **spec.props)


def to_pydeck_view_state(view_state: ViewState) -> pdk.ViewState:
    extra: Dict[str, Any] = {}
    if view_state.transition_duration:
        extra['transition_duration'] = view_state.transition_duration
        extra['transition_interpolator'] = {'@@type': 'FlyToInterpolator'}
    return pdk.ViewState(
        longitude=view_state.longitude,
        latitude=view_state.latitude,
        zoom=view_state.zoom,
        min_zoom=view_state.min_zoom,
        max_zoom=view_state.max_zoom,
        pitch=view_state.pitch,
        bearing=view_state.bearing,
        **extra,
    )


def build_deck(
    layers: Iterable[LayerSpec],
    view_state: ViewState,
    mode: Any,
    map_style: str,
    mapbox_api_key: Optional[str] = None,
) -> pdk.Deck:
    return pdk.Deck(
        layers=[to_pydeck_layer(spec, mode) for spec in layers],
        initial_view_state=to_pydeck_view_state(view_state),
        map_style=map_style,
        map_provider='mapbox',
        api_keys={'mapbox': mapbox_api_key} if mapbox_api_key else None,
        tooltip=TOOLTIP,
        effects=[LIGHTING_EFFECT],
    )


def dispatch_selection(session: MapSession, selection: Optional[Mapping[str, Any]]) -> List[Any]:
    """Feed a Streamlit pydeck selection payload (``{'objects': {layer_id: [...]}}``) to the session."""
    results = []
    for layer_id, objects in ((selection or {}).get('objects') or {}).items():
        for obj in objects or ():
            results.append(session.click(layer_id, obj))
    return results
