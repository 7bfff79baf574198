"""Wires the dashboard store, data snapshot, layer composer and camera together.

``MapSession`` reacts to state-change events: a mode or toggle change (or a
new data snapshot) recomposes the layers, a change of the selected report
moves the camera, and a new route origin or destination drops the loaded
route. Hover never touches the camera.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple

from entities import Cluster, GeoFeature, PickInfo
from hover_resolver import Tooltip, resolve_tooltip
from layer_composer import LayerCallbacks, LayerSpec, MapData, Notification, compose
from mode_state import DashboardState, DashboardStore
from viewport import ViewportController, ViewState

logger = logging.getLogger(__name__)


class MapSession:
    def __init__(
        self,
        store: Optional[DashboardStore] = None,
        data: Optional[MapData] = None,
        viewport: Optional[ViewportController] = None,
        notify: Optional[Callable[[Notification], Any]] = None,
    ) -> None:
        self.store = store or DashboardStore()
        self.viewport = viewport or ViewportController()
        self.tooltip: Optional[Tooltip] = None
        self.notifications: List[Notification] = []
        self._notify = notify
        self._data = data or MapData()
        self.callbacks = LayerCallbacks(
            on_hover=self.hover,
            on_select_point=self.select_point,
            on_select_fire_station=self.select_fire_station,
            on_select_cluster=self.select_cluster,
            notify=self.push_notification,
        )
        self.layers: List[LayerSpec] = []
        self._unsubscribe = self.store.subscribe(self._on_state_change)
        self._recompose()

    @property
    def data(self) -> MapData:
        return self._data

    @property
    def state(self) -> DashboardState:
        return self.store.get_state()

    def close(self) -> None:
        self._unsubscribe()

    # --- inputs -------------------------------------------------------------

    def set_data(self, **collections: Any) -> bool:
        """Swap in new collections; recomposes only when something changed."""
        updated = replace(self._data, **collections)
        if updated == self._data:
            return False
        self._data = updated
        self._recompose()
        return True

    def hover(self, info: Optional[PickInfo]) -> Optional[Tooltip]:
        self.tooltip = resolve_tooltip(info, self.state.mode)
        return self.tooltip

    def click(self, layer_id: str, obj: Any, x: Optional[float] = None, y: Optional[float] = None) -> Any:
        """Route a click on ``layer_id`` to that layer's handler, if it has one."""
        for layer in self.layers:
            if layer.id == layer_id and layer.on_click:
                return layer.on_click(PickInfo(object=obj, x=x, y=y, layer_id=layer_id))
        logger.debug('Click on %s has no handler', layer_id)
        return None

    def on_view_state_change(self, reported: Any) -> bool:
        return self.viewport.on_view_state_change(reported)

    # --- selection callbacks ------------------------------------------------

    def select_point(self, point_id: Optional[str]) -> None:
        self.store.set_state(selected_point_id=point_id)

    def select_fire_station(self, feature: GeoFeature) -> None:
        self.store.set_state(selected_fire_station=feature)

    def select_cluster(self, cluster: Cluster) -> None:
        self.store.set_state(selected_cluster=cluster)

    def push_notification(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._notify:
            self._notify(notification)

    def drain_notifications(self) -> List[Notification]:
        pending, self.notifications = self.notifications, []
        return pending

    # --- outputs ------------------------------------------------------------

    @property
    def view_state(self) -> ViewState:
        return self.viewport.view_state

    def _recompose(self) -> None:
        state = self.state
        self.layers = compose(state.mode, state.toggles, self._data, self.callbacks)
        logger.debug('Composed %d layers for mode %s', len(self.layers), state.mode)

    def _on_state_change(self, previous: DashboardState, current: DashboardState) -> None:
        if previous.mode != current.mode or previous.toggles != current.toggles:
            self.tooltip = None
            self._recompose()
        point_id = current.selection.selected_point_id
        if previous.selection.selected_point_id != point_id:
            self.viewport.select_point(point_id, self._data.reports)
        if _endpoints(previous) != _endpoints(current):
            # a route belongs to one origin/destination pair
            self.set_data(route=None)

    def pending_route(self) -> Optional[Tuple[GeoFeature, Cluster]]:
        """(origin, destination) once both are picked and no route is loaded for them yet."""
        origin, destination = _endpoints(self.state)
        if origin is None or destination is None or self._data.route is not None:
            return None
        return origin, destination


def _endpoints(state: DashboardState) -> Tuple[Any, Any]:
    return state.selection.selected_fire_station, state.selection.selected_cluster
