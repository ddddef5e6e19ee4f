"""
Time cursor model and playback state machine.

States: UNINITIALIZED -> READY <-> PLAYING

- load():  builds the ordered (year, timestamp) sequence and places the cursor
- play():  starts a repeating timer (period = 1 s / steps_per_second); each
           tick advances the cursor, wrapping to the first entry after the last
- pause(): cancels the timer; pausing while paused is a no-op
- seek():  jumps to a sequence index (out-of-range is a caller error)
"""
import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

MS_IN_SECOND = 1000
DEFAULT_STEPS_PER_SECOND = 2.0


class PlaybackStatus(Enum):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    PLAYING = 'playing'


@dataclass(frozen=True)
class TimeCursor:
    year: str
    timestamp: str


@dataclass(frozen=True)
class PlaybackState:
    is_playing: bool = False
    steps_per_second: float = DEFAULT_STEPS_PER_SECOND

    @property
    def period_ms(self) -> float:
        return MS_IN_SECOND / self.steps_per_second


def build_timestamp_sequence(
    years: Iterable[str],
    timestamps_for_year: Callable[[str], Iterable[str]],
) -> Tuple[TimeCursor, ...]:
    """
    Enumerate every valid (year, timestamp) pair.

    Years ascend; timestamps keep the order the data source reports them in.

    Args:
        years: Year keys in ascending order
        timestamps_for_year: Returns the timestamp keys observed for a year
    """
    return tuple(
        TimeCursor(str(year), str(timestamp))
        for year in years
        for timestamp in timestamps_for_year(str(year))
    )


def validate_steps_per_second(steps_per_second) -> float:
    """Return the rate as float, or raise ValueError if it isn't finite and positive."""
    try:
        rate = float(steps_per_second)
    except (TypeError, ValueError) as e:
        raise ValueError(f"steps_per_second must be a number, got {steps_per_second!r}") from e
    if not math.isfinite(rate) or rate <= 0:
        raise ValueError(f"steps_per_second must be positive, got {steps_per_second!r}")
    return rate


class IntervalTimer:
    """
    Calls a function every period on a daemon thread until cancelled.

    Exceptions from the callback are logged and do not stop the timer.
    """

    def __init__(self, period_seconds: float, callback: Callable[[], None]):
        self.period_seconds = period_seconds
        self.callback = callback
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> 'IntervalTimer':
        self._thread = threading.Thread(target=self._run, name="playback-timer", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stopped.set()

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stopped.is_set()

    def _run(self) -> None:
        while not self._stopped.wait(self.period_seconds):
            try:
                self.callback()
            except Exception:
                logger.exception("Playback tick failed")


def start_interval_timer(period_seconds: float, callback: Callable[[], None]) -> IntervalTimer:
    return IntervalTimer(period_seconds, callback).start()


class TimeCursorController:
    """
    Owns the valid-pairs sequence, the cursor and the playback state.

    Args:
        timer_factory: (period_seconds, callback) -> started timer with cancel()
        tick_callback: What the timer calls each period (defaults to self.tick);
            the dashboard controller routes ticks through its own lock here
    """

    def __init__(
        self,
        timer_factory: Callable[[float, Callable[[], None]], object] = start_interval_timer,
        tick_callback: Optional[Callable[[], None]] = None,
    ):
        self.timer_factory = timer_factory
        self.tick_callback = tick_callback
        self.status = PlaybackStatus.UNINITIALIZED
        self.sequence: Tuple[TimeCursor, ...] = ()
        self.index: Optional[int] = None
        self.playback = PlaybackState()
        self._timer = None

    @property
    def cursor(self) -> Optional[TimeCursor]:
        if self.index is None:
            return None
        return self.sequence[self.index]

    def index_of(self, year, timestamp) -> Optional[int]:
        target = TimeCursor(str(year), str(timestamp))
        try:
            return self.sequence.index(target)
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def load(
        self,
        sequence: Sequence[TimeCursor],
        initial: Optional[Tuple[str, str]] = None,
        steps_per_second: Optional[float] = None,
    ) -> bool:
        """
        Install a new sequence and place the cursor.

        The cursor goes to `initial` when it's in the sequence, otherwise to
        the first entry. Loading while playing stops playback first. An empty
        sequence leaves the controller UNINITIALIZED.

        Returns:
            True if the controller is READY afterwards
        """
        self._cancel_timer()
        if steps_per_second is not None:
            self.playback = PlaybackState(False, validate_steps_per_second(steps_per_second))
        else:
            self.playback = PlaybackState(False, self.playback.steps_per_second)

        self.sequence = tuple(sequence)
        if not self.sequence:
            logger.warning("No (year, timestamp) pairs found; time control stays uninitialized")
            self.status = PlaybackStatus.UNINITIALIZED
            self.index = None
            return False

        index = self.index_of(*initial) if initial else None
        if initial and index is None:
            logger.info(f"Initial timestamp {initial} not in data; starting at {self.sequence[0]}")
        self.index = index if index is not None else 0
        self.status = PlaybackStatus.READY
        logger.info(f"Timeline loaded: {len(self.sequence)} steps, cursor at {self.cursor}")
        return True

    def play(self) -> bool:
        """READY -> PLAYING. Returns False if not READY."""
        if self.status is PlaybackStatus.PLAYING:
            return False
        if self.status is not PlaybackStatus.READY:
            logger.warning("Cannot play before a timeline is loaded")
            return False
        self._start_timer()
        self.status = PlaybackStatus.PLAYING
        self.playback = PlaybackState(True, self.playback.steps_per_second)
        logger.info(f"Playback started at {self.playback.steps_per_second:g} steps/s")
        return True

    def pause(self) -> bool:
        """PLAYING -> READY. Idempotent; returns False if nothing changed."""
        if self.status is not PlaybackStatus.PLAYING:
            return False
        self._cancel_timer()
        self.status = PlaybackStatus.READY
        self.playback = PlaybackState(False, self.playback.steps_per_second)
        logger.info("Playback paused")
        return True

    def seek(self, index: int) -> TimeCursor:
        """
        Move the cursor to a sequence index. State is unchanged.

        Raises:
            IndexError: If index is outside the sequence
        """
        if self.status is PlaybackStatus.UNINITIALIZED:
            raise IndexError("Cannot seek before a timeline is loaded")
        if not 0 <= index < len(self.sequence):
            raise IndexError(f"Seek index {index} outside 0..{len(self.sequence) - 1}")
        self.index = index
        return self.cursor

    def set_steps_per_second(self, steps_per_second) -> PlaybackState:
        """
        Change the playback rate; a running timer is restarted at the new period.

        Raises:
            ValueError: If the rate is not a positive finite number
        """
        rate = validate_steps_per_second(steps_per_second)
        self.playback = PlaybackState(self.playback.is_playing, rate)
        if self.status is PlaybackStatus.PLAYING:
            self._cancel_timer()
            self._start_timer()
        return self.playback

    def tick(self) -> Optional[TimeCursor]:
        """Advance one step, wrapping after the last entry."""
        if not self.sequence or self.index is None:
            return None
        self.index = 0 if self.index >= len(self.sequence) - 1 else self.index + 1
        return self.cursor

    def teardown(self) -> None:
        """Stop any running timer (widget going away)."""
        self.pause()
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        period_seconds = self.playback.period_ms / MS_IN_SECOND
        self._timer = self.timer_factory(period_seconds, self.tick_callback or self.tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
