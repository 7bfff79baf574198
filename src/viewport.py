"""Camera state and selection-driven fly-to animation.

The controller owns the only mutable ``ViewState``. Two paths write to it:

- live interaction feedback from the renderer, accepted verbatim, and
- a change of the selected report, which starts a 500 ms eased transition.

While a transition is in flight, interaction feedback is ignored so a stale
camera report cannot clobber the animation. A new selection replaces the
in-flight target and starts from wherever the camera currently is.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from entities import Report
from map_config import (
    HOME_VIEW,
    SELECTION_BEARING,
    SELECTION_PITCH,
    SELECTION_ZOOM,
    TRANSITION_DURATION_MS,
)

logger = logging.getLogger(__name__)

Easing = Callable[[float], float]


def ease_in_out_quad(t: float) -> float:
    return 2 * t * t if t < 0.5 else -1 + (4 - 2 * t) * t


@dataclass(frozen=True)
class ViewState:
    longitude: float
    latitude: float
    zoom: float
    min_zoom: float = 0
    max_zoom: float = 15
    pitch: float = 0
    bearing: float = 0
    transition_duration: Optional[int] = None
    easing: Optional[Easing] = None

    @classmethod
    def home(cls) -> 'ViewState':
        return cls(**HOME_VIEW)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> 'ViewState':
        """Build from a renderer payload; accepts camelCase keys as deck.gl sends them."""
        aliases = {
            'minZoom': 'min_zoom',
            'maxZoom': 'max_zoom',
            'transitionDuration': 'transition_duration',
        }
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in d.items():
            key = aliases.get(key, key)
            if key in known:
                kwargs[key] = value
        return cls(**kwargs)


_ANIMATED = ('longitude', 'latitude', 'zoom', 'pitch', 'bearing')


def interpolate_view_state(start: ViewState, end: ViewState, t: float, easing: Optional[Easing] = None) -> ViewState:
    """Camera between ``start`` and ``end`` at linear progress ``t`` in [0, 1]."""
    t = min(1.0, max(0.0, t))
    k = easing(t) if easing else t
    values = {name: getattr(start, name) + (getattr(end, name) - getattr(start, name)) * k for name in _ANIMATED}
    return replace(end, **values)


@dataclass(frozen=True)
class Transition:
    start: ViewState
    target: ViewState
    started_at: float
    duration_ms: int
    easing: Easing

    def progress(self, now: float) -> float:
        if self.duration_ms <= 0:
            return 1.0
        return min(1.0, max(0.0, (now - self.started_at) * 1000.0 / self.duration_ms))

    def view_at(self, now: float) -> ViewState:
        return interpolate_view_state(self.start, self.target, self.progress(now), self.easing)


class ViewportController:
    """Owns the camera.

    Example:
        viewport = ViewportController()
        viewport.select_point('5d1f', reports)
        deck_view = viewport.view_state   # target, with transition metadata
        frame = viewport.view_at(now)     # interpolated camera for a frame
    """

    def __init__(self, initial: Optional[ViewState] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._view_state = initial or ViewState.home()
        self._clock = clock
        self._transition: Optional[Transition] = None
        self._selected_point_id: Optional[str] = None

    @property
    def view_state(self) -> ViewState:
        return self._view_state

    @property
    def selected_point_id(self) -> Optional[str]:
        return self._selected_point_id

    def is_animating(self, now: Optional[float] = None) -> bool:
        if self._transition is None:
            return False
        now = self._clock() if now is None else now
        if self._transition.progress(now) >= 1.0:
            self._transition = None
            return False
        return True

    def view_at(self, now: Optional[float] = None) -> ViewState:
        """Camera for the frame at ``now``; the stored view state once no transition is running."""
        now = self._clock() if now is None else now
        if self.is_animating(now):
            return self._transition.view_at(now)
        return self._view_state

    def on_view_state_change(self, reported: Union[ViewState, Mapping[str, Any]], now: Optional[float] = None) -> bool:
        """Accept the renderer's camera after pan/zoom/rotate.

        Returns False when the report was dropped because an animation is in flight.
        """
        if self.is_animating(now):
            logger.debug('Ignoring camera feedback during transition')
            return False
        if not isinstance(reported, ViewState):
            reported = ViewState.from_dict(reported)
        self._view_state = reported
        return True

    def select_point(self, point_id: Optional[str], reports: Iterable[Report], now: Optional[float] = None) -> bool:
        """Fly to the report with ``point_id`` when the selection changes.

        Returns True when a transition was started. A cleared or unchanged id,
        or an id with no matching report, leaves the view untouched.
        """
        if point_id == self._selected_point_id:
            return False
        self._selected_point_id = point_id
        if point_id is None:
            return False

        report = next((r for r in reports if r.id == point_id), None)
        if report is None:
            logger.warning('Selected point %s not found among reports, keeping current view', point_id)
            return False

        now = self._clock() if now is None else now
        start = self.view_at(now)
        target = replace(
            start,
            longitude=report.lng,
            latitude=report.lat,
            zoom=SELECTION_ZOOM,
            pitch=SELECTION_PITCH,
            bearing=SELECTION_BEARING,
            transition_duration=TRANSITION_DURATION_MS,
            easing=ease_in_out_quad,
        )
        self._transition = Transition(
            start=replace(start, transition_duration=None, easing=None),
            target=target,
            started_at=now,
            duration_ms=TRANSITION_DURATION_MS,
            easing=ease_in_out_quad,
        )
        self._view_state = target
        return True
