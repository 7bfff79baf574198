import streamlit as st
import pandas as pd
from pathlib import Path
import sys
from typing import Optional

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / 'src'
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from data.report_feed import ReportFeed
from deck_renderer import build_deck, dispatch_selection
from color_policy import priority_buckets
from entities import Cluster, GeoFeature, PickInfo
from hover_resolver import resolve_tooltip
from layer_composer import MapData
from map_config import MAP_STYLES, MAX_BUCKET, Settings, load_settings
from map_session import MapSession
from mode_state import Mode
from utils.exceptions import IncidentMapException
from utils.logger_config import setup_logger

logger = setup_logger('incident_map_app')

MODE_LABELS = {
    Mode.REPORTS: 'Reports',
    Mode.CLUSTERS: 'Clusters',
    Mode.TRIAGE: 'Triage',
}


@st.cache_data(show_spinner=False)
def load_map_data(_settings: Settings, source: str, refresh_token: int) -> MapData:
    # source/refresh_token only key the cache
    return ReportFeed(_settings).load_snapshot()


def get_session() -> MapSession:
    if 'map_session' not in st.session_state:
        st.session_state['map_session'] = MapSession()
        st.session_state['refresh_token'] = 0
        st.session_state['last_selection'] = None
    return st.session_state['map_session']


def selection_key(selection) -> Optional[str]:
    if not selection:
        return None
    return repr(sorted((selection.get('indices') or {}).items()))


def render_selection_card(session: MapSession, selection) -> None:
    objects = (selection or {}).get('objects') or {}
    for layer_id, picked in objects.items():
        for obj in picked or []:
            tooltip = resolve_tooltip(PickInfo(object=obj, layer_id=layer_id), session.state.mode)
            if tooltip:
                st.sidebar.info('  \n'.join(tooltip.lines))


def render_route_status(session: MapSession, feed: ReportFeed) -> None:
    selection = session.state.selection
    origin: Optional[GeoFeature] = selection.selected_fire_station
    destination: Optional[Cluster] = selection.selected_cluster
    st.sidebar.markdown('---')
    st.sidebar.subheader('Navigation')
    st.sidebar.write(f"Origin: **{origin.name if origin else 'click a firestation'}**")
    st.sidebar.write(
        f"Destination: **{f'Cluster - {destination.report_count} reports' if destination else 'click a cluster'}**"
    )
    pending = session.pending_route()
    if pending is None:
        return
    with st.spinner('Calculating route...'):
        try:
            route = feed.load_route(*pending)
        except IncidentMapException as err:
            st.sidebar.error(str(err))
            return
    if route is not None:
        session.set_data(route=route)


def main():
    st.set_page_config(page_title='Incident Map Console', layout='wide')
    st.markdown('## Incident Map Console')
    st.caption('Explore incident reports, triage clusters and plan firestation routes.')

    try:
        settings = load_settings()
    except IncidentMapException as err:
        st.error(str(err))
        st.stop()

    session = get_session()
    feed = ReportFeed(settings)
    for note in st.session_state.pop('pending_toasts', []):
        st.toast(f'**{note.message}**  \n{note.description}')

    st.sidebar.header('Map')
    mode_value = st.sidebar.radio(
        'Mode',
        list(MODE_LABELS),
        index=list(MODE_LABELS).index(Mode.parse(session.state.mode) or Mode.REPORTS),
        format_func=lambda m: MODE_LABELS[m],
        horizontal=True,
    )
    style_label = st.sidebar.radio('Style', list(MAP_STYLES), horizontal=True)
    session.store.set_state(mode=mode_value, map_style=MAP_STYLES[style_label])

    if mode_value is Mode.REPORTS:
        st.sidebar.subheader('Layers')
        hexagon_on = st.sidebar.checkbox('Count Heatmap', value=session.state.toggles.hexagon_on)
        scatterplot_on = st.sidebar.checkbox('Priority Scatterplot', value=session.state.toggles.scatterplot_on)
        session.store.set_state(hexagon_on=hexagon_on, scatterplot_on=scatterplot_on)

    if st.sidebar.button('Refresh reports', type='primary'):
        st.session_state['refresh_token'] += 1

    source = settings.api_url or str(settings.data_dir)
    try:
        with st.spinner('Loading reports...'):
            data = load_map_data(settings, source, st.session_state['refresh_token'])
    except IncidentMapException as err:
        st.error(str(err))
        st.stop()
    snapshot = {name: getattr(data, name) for name in data.__dataclass_fields__}
    selection = session.state.selection
    if selection.selected_fire_station is not None or selection.selected_cluster is not None:
        # the route follows the picked origin/destination, not the snapshot
        snapshot.pop('route')
    session.set_data(**snapshot)

    if mode_value is Mode.TRIAGE:
        if session.data.buildings is None:
            st.info('Loading building data...')
        render_route_status(session, feed)

    deck = build_deck(
        session.layers,
        session.view_state,
        session.state.mode,
        session.state.map_style,
        settings.mapbox_api_key,
    )
    event = st.pydeck_chart(
        deck,
        use_container_width=True,
        on_select='rerun',
        selection_mode='single-object',
        key='incident-map',
    )

    selection = getattr(event, 'selection', None)
    key = selection_key(selection)
    if key and key != st.session_state.get('last_selection'):
        st.session_state['last_selection'] = key
        dispatch_selection(session, selection)
        st.session_state['pending_toasts'] = session.drain_notifications()
        logger.info(f'Selection on map: {key}')
        st.rerun()
    render_selection_card(session, selection)

    if session.data.reports:
        priorities = pd.Series([r.priority for r in session.data.reports], dtype=float)
        reports_col, clusters_col, priority_col = st.columns(3)
        reports_col.metric('Reports', f'{len(session.data.reports):,}')
        clusters_col.metric('Clusters', f'{len(session.data.clusters):,}')
        critical = int((priority_buckets(priorities) == MAX_BUCKET).sum())
        priority_col.metric('Critical reports', f'{critical:,}')


if __name__ == '__main__':
    main()
