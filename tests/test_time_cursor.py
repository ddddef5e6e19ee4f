"""Tests for the timeline sequence and the playback state machine."""
import threading

import pytest

from overlay_dashboard.utils.time_cursor import (
    IntervalTimer,
    PlaybackState,
    PlaybackStatus,
    TimeCursor,
    TimeCursorController,
    build_timestamp_sequence,
    validate_steps_per_second,
)

YEARS = ['2010', '2011', '2012']


def two_per_year(year):
    return ['0', '1']


@pytest.fixture
def sequence():
    return build_timestamp_sequence(YEARS, two_per_year)


@pytest.fixture
def controller(timers):
    return TimeCursorController(timer_factory=timers)


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------

class TestBuildTimestampSequence:
    def test_years_ascending_timestamps_in_source_order(self, sequence):
        assert [(c.year, c.timestamp) for c in sequence] == [
            ('2010', '0'), ('2010', '1'),
            ('2011', '0'), ('2011', '1'),
            ('2012', '0'), ('2012', '1'),
        ]

    def test_years_without_timestamps_contribute_nothing(self):
        lookup = {'2010': ['5', '3'], '2011': []}
        sequence = build_timestamp_sequence(['2010', '2011'], lambda year: lookup.get(year, []))
        assert sequence == (TimeCursor('2010', '5'), TimeCursor('2010', '3'))


class TestPlaybackState:
    def test_period(self):
        assert PlaybackState(False, 2).period_ms == 500
        assert PlaybackState(False, 0.5).period_ms == 2000

    def test_rate_validation(self):
        assert validate_steps_per_second('4') == 4.0
        for bad in (0, -1, float('inf'), float('nan'), None, 'fast'):
            with pytest.raises(ValueError):
                validate_steps_per_second(bad)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestLoad:
    def test_starts_uninitialized(self, controller):
        assert controller.status is PlaybackStatus.UNINITIALIZED
        assert controller.cursor is None

    def test_load_places_cursor_at_first_entry(self, controller, sequence):
        assert controller.load(sequence)
        assert controller.status is PlaybackStatus.READY
        assert controller.cursor == TimeCursor('2010', '0')

    def test_load_honours_initial_timestamp(self, controller, sequence):
        controller.load(sequence, initial=('2011', '1'))
        assert controller.index == 3

    def test_unknown_initial_timestamp_falls_back(self, controller, sequence):
        controller.load(sequence, initial=('1999', '0'))
        assert controller.index == 0

    def test_empty_sequence_stays_uninitialized(self, controller):
        assert not controller.load(())
        assert controller.status is PlaybackStatus.UNINITIALIZED
        assert controller.cursor is None

    def test_reload_stops_playback(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        controller.load(sequence)
        assert controller.status is PlaybackStatus.READY
        assert timers.created[0].cancelled

    def test_load_sets_rate(self, controller, sequence):
        controller.load(sequence, steps_per_second=4)
        assert controller.playback.steps_per_second == 4.0


class TestPlayback:
    """Playback advances on timer ticks and loops."""

    def test_play_starts_timer_at_rate(self, controller, sequence, timers):
        controller.load(sequence)
        assert controller.play()
        assert controller.status is PlaybackStatus.PLAYING
        assert controller.playback.is_playing
        assert timers.created[0].period_seconds == pytest.approx(0.5)

    def test_play_before_load_is_refused(self, controller, timers):
        assert not controller.play()
        assert timers.created == []

    def test_play_while_playing_is_noop(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        assert not controller.play()
        assert len(timers.created) == 1

    def test_ticks_advance_and_wrap(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        timers.created[0].fire(5)
        assert controller.cursor == TimeCursor('2012', '1')
        timers.created[0].fire()
        assert controller.index == 0

    def test_pause_cancels_timer(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        assert controller.pause()
        assert controller.status is PlaybackStatus.READY
        assert timers.created[0].cancelled

    def test_pause_is_idempotent(self, controller, sequence):
        controller.load(sequence)
        assert not controller.pause()
        controller.play()
        assert controller.pause()
        assert not controller.pause()
        assert controller.status is PlaybackStatus.READY

    def test_rate_change_while_playing_restarts_timer(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        controller.set_steps_per_second(4)
        assert timers.created[0].cancelled
        assert timers.created[1].period_seconds == pytest.approx(0.25)
        assert controller.status is PlaybackStatus.PLAYING

    def test_rate_change_while_paused_starts_nothing(self, controller, sequence, timers):
        controller.load(sequence)
        controller.set_steps_per_second(10)
        assert timers.created == []
        assert controller.playback.steps_per_second == 10.0

    def test_invalid_rate_keeps_previous(self, controller, sequence):
        controller.load(sequence)
        with pytest.raises(ValueError):
            controller.set_steps_per_second(0)
        assert controller.playback.steps_per_second == 2.0

    def test_teardown_cancels_timer(self, controller, sequence, timers):
        controller.load(sequence)
        controller.play()
        controller.teardown()
        assert timers.created[0].cancelled
        assert controller.status is PlaybackStatus.READY

    def test_tick_callback_override(self, sequence, timers):
        calls = []
        controller = TimeCursorController(timer_factory=timers, tick_callback=lambda: calls.append(1))
        controller.load(sequence)
        controller.play()
        timers.created[0].fire(2)
        assert calls == [1, 1]
        assert controller.index == 0


class TestSeek:
    def test_seek_moves_cursor_without_changing_state(self, controller, sequence):
        controller.load(sequence)
        assert controller.seek(4) == TimeCursor('2012', '0')
        assert controller.status is PlaybackStatus.READY

    def test_seek_out_of_range(self, controller, sequence):
        controller.load(sequence)
        with pytest.raises(IndexError):
            controller.seek(6)
        with pytest.raises(IndexError):
            controller.seek(-1)
        assert controller.index == 0

    def test_seek_before_load(self, controller):
        with pytest.raises(IndexError):
            controller.seek(0)


# ---------------------------------------------------------------------------
# Real timer
# ---------------------------------------------------------------------------

class TestIntervalTimer:
    def test_calls_until_cancelled(self):
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) >= 2:
                fired.set()

        timer = IntervalTimer(0.01, callback).start()
        try:
            assert fired.wait(timeout=5)
        finally:
            timer.cancel()
        assert not timer.active

    def test_callback_errors_do_not_stop_timer(self):
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            fired.set()

        timer = IntervalTimer(0.01, callback).start()
        try:
            assert fired.wait(timeout=5)
        finally:
            timer.cancel()
