import pytest
from pathlib import Path
import sys

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from entities import Report
from map_config import HOME_VIEW, SELECTION_BEARING
from viewport import (
    Transition,
    ViewportController,
    ViewState,
    ease_in_out_quad,
    interpolate_view_state,
)


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reports():
    return (
        Report(id='a', name='Flooded street', lat=29.8, lng=-95.2, priority=0.9),
        Report(id='b', name='Tree down', lat=29.6, lng=-95.5, priority=0.3),
    )


@pytest.fixture
def viewport(clock):
    return ViewportController(clock=clock)


class TestEasing:
    @pytest.mark.parametrize('t, expected', [
        (0.0, 0.0),
        (0.25, 0.125),
        (0.5, 0.5),
        (0.75, 0.875),
        (1.0, 1.0),
    ])
    def test_ease_in_out_quad(self, t, expected):
        assert ease_in_out_quad(t) == pytest.approx(expected)

    def test_interpolate_clamps_progress(self):
        start = ViewState(longitude=0, latitude=0, zoom=1)
        end = ViewState(longitude=10, latitude=20, zoom=5)
        assert interpolate_view_state(start, end, 2.0) == end
        back = interpolate_view_state(start, end, -1.0)
        assert (back.longitude, back.latitude, back.zoom) == (0, 0, 1)

    def test_transition_with_zero_duration_is_done(self):
        start = ViewState(longitude=0, latitude=0, zoom=1)
        end = ViewState(longitude=10, latitude=20, zoom=5)
        transition = Transition(start, end, started_at=0.0, duration_ms=0, easing=ease_in_out_quad)
        assert transition.progress(0.0) == 1.0


class TestViewState:
    def test_home(self):
        home = ViewState.home()
        assert home.longitude == HOME_VIEW['longitude']
        assert home.zoom == 9.27
        assert home.pitch == 40.5
        assert home.transition_duration is None

    def test_from_dict_accepts_camel_case(self):
        view = ViewState.from_dict({
            'longitude': -95.0, 'latitude': 29.0, 'zoom': 11,
            'minZoom': 2, 'maxZoom': 16, 'pitch': 10, 'bearing': 5,
            'width': 800, 'height': 600,
        })
        assert view == ViewState(-95.0, 29.0, 11, min_zoom=2, max_zoom=16, pitch=10, bearing=5)


class TestSelection:
    def test_initial_view_is_home(self, viewport):
        assert viewport.view_state == ViewState.home()
        assert viewport.selected_point_id is None

    def test_select_flies_to_report(self, viewport, reports):
        assert viewport.select_point('a', reports) is True
        view = viewport.view_state
        assert (view.longitude, view.latitude) == (-95.2, 29.8)
        assert view.zoom == 14
        assert view.pitch == 40.5
        assert view.bearing == SELECTION_BEARING
        assert view.transition_duration == 500
        assert view.easing is ease_in_out_quad

    def test_reselecting_same_id_is_noop(self, viewport, reports):
        viewport.select_point('a', reports)
        target = viewport.view_state
        assert viewport.select_point('a', reports) is False
        assert viewport.view_state is target

    def test_unknown_id_keeps_view(self, viewport, reports):
        before = viewport.view_state
        assert viewport.select_point('missing', reports) is False
        assert viewport.view_state == before
        assert viewport.selected_point_id == 'missing'
        assert not viewport.is_animating()

    def test_clearing_selection_keeps_view(self, viewport, reports):
        viewport.select_point('a', reports)
        target = viewport.view_state
        assert viewport.select_point(None, reports) is False
        assert viewport.view_state == target

    def test_frames_follow_eased_curve(self, viewport, reports, clock):
        home = ViewState.home()
        viewport.select_point('a', reports)

        clock.advance(0.125)  # a quarter of 500 ms
        frame = viewport.view_at()
        k = ease_in_out_quad(0.25)
        assert frame.longitude == pytest.approx(home.longitude + (-95.2 - home.longitude) * k)
        assert frame.zoom == pytest.approx(home.zoom + (14 - home.zoom) * k)

        clock.advance(0.125)
        assert viewport.view_at().latitude == pytest.approx((home.latitude + 29.8) / 2)

        clock.advance(0.3)
        assert viewport.view_at() == viewport.view_state
        assert not viewport.is_animating()

    def test_new_selection_starts_from_current_frame(self, viewport, reports, clock):
        viewport.select_point('a', reports)
        clock.advance(0.25)
        midway = viewport.view_at()

        viewport.select_point('b', reports)
        assert viewport.view_at().longitude == pytest.approx(midway.longitude)
        assert viewport.view_state.longitude == -95.5


class TestInteractionFeedback:
    def test_feedback_accepted_when_idle(self, viewport):
        assert viewport.on_view_state_change({'longitude': -95.0, 'latitude': 29.0, 'zoom': 12}) is True
        assert viewport.view_state.zoom == 12
        assert viewport.view_state.transition_duration is None

    def test_feedback_ignored_during_transition(self, viewport, reports, clock):
        viewport.select_point('a', reports)
        target = viewport.view_state
        clock.advance(0.2)
        assert viewport.on_view_state_change(ViewState(-80.0, 40.0, 3)) is False
        assert viewport.view_state == target

    def test_feedback_accepted_after_transition(self, viewport, reports, clock):
        viewport.select_point('a', reports)
        clock.advance(0.6)
        assert viewport.on_view_state_change(ViewState(-80.0, 40.0, 3)) is True
        assert viewport.view_state == ViewState(-80.0, 40.0, 3)
