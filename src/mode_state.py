"""Dashboard state: active mode, layer toggles and the current selection.

``DashboardStore`` is a small observable container. Listeners receive the
previous and current ``DashboardState`` after every effective change, which
is what drives layer recomposition and camera animation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, List, Optional

from map_config import DEFAULT_MAP_STYLE
from utils.exceptions import ConfigError

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    REPORTS = '1'
    CLUSTERS = '2'
    TRIAGE = '3'

    @classmethod
    def parse(cls, value: Any) -> Optional['Mode']:
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


@dataclass(frozen=True)
class Toggles:
    """Reports-mode layer switches."""

    hexagon_on: bool = True
    scatterplot_on: bool = False


@dataclass(frozen=True)
class SelectionState:
    selected_point_id: Optional[str] = None
    selected_fire_station: Any = None
    selected_cluster: Any = None


@dataclass(frozen=True)
class DashboardState:
    mode: Any = Mode.REPORTS
    toggles: Toggles = field(default_factory=Toggles)
    selection: SelectionState = field(default_factory=SelectionState)
    map_style: str = DEFAULT_MAP_STYLE


Listener = Callable[[DashboardState, DashboardState], None]

_TOGGLE_KEYS = {f.name for f in fields(Toggles)}
_SELECTION_KEYS = {f.name for f in fields(SelectionState)}
_STATE_KEYS = {f.name for f in fields(DashboardState)}


class DashboardStore:
    """Holds the dashboard state and notifies subscribers on change.

    Example:
        store = DashboardStore()
        unsubscribe = store.subscribe(lambda prev, cur: print(cur.mode))
        store.set_state(mode=Mode.TRIAGE)
    """

    def __init__(self, initial: Optional[DashboardState] = None) -> None:
        self._state = initial or DashboardState()
        self._listeners: List[Listener] = []

    def get_state(self) -> DashboardState:
        return self._state

    def set_state(self, **patch: Any) -> DashboardState:
        """Apply a partial update.

        Top-level fields are replaced as given; toggle and selection fields may
        also be passed flat (``hexagon_on=False``, ``selected_point_id='abc'``).
        Listeners run only when the resulting state differs.
        """
        unknown = set(patch) - _STATE_KEYS - _TOGGLE_KEYS - _SELECTION_KEYS
        if unknown:
            raise ConfigError(f'Unknown dashboard state keys: {sorted(unknown)}')

        top = {k: v for k, v in patch.items() if k in _STATE_KEYS}
        toggles = {k: v for k, v in patch.items() if k in _TOGGLE_KEYS}
        selection = {k: v for k, v in patch.items() if k in _SELECTION_KEYS}

        if 'mode' in top:
            parsed = Mode.parse(top['mode'])
            if parsed is None:
                logger.warning('Unknown mode %r, no layers will be drawn', top['mode'])
            else:
                top['mode'] = parsed

        previous = self._state
        current = replace(previous, **top)
        if toggles:
            current = replace(current, toggles=replace(current.toggles, **toggles))
        if selection:
            current = replace(current, selection=replace(current.selection, **selection))

        if current == previous:
            return current
        self._state = current
        for listener in list(self._listeners):
            listener(previous, current)
        return current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
