"""Track recorder: turns raw location samples into a noise-filtered track."""

import logging
from datetime import datetime, timezone
from typing import Callable

import config
from geo import haversine, heading, path_length
from models import Coordinate, TrackPoint

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackRecorder:
    """Append-only track with a minimum-displacement filter.

    Heading follows every raw sample; the track only grows while recording is
    enabled and the new sample is at least min_displacement_m away from the
    last recorded point.
    """

    def __init__(
        self,
        min_displacement_m: float = config.TRACK_MIN_DISPLACEMENT_M,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.min_displacement_m = min_displacement_m
        self.clock = clock
        self.enabled = False
        self.heading = 0.0
        self._last_raw: Coordinate | None = None
        self._points: list[TrackPoint] = []
        self.started_at: datetime | None = None

    @property
    def points(self) -> list[TrackPoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def start(self) -> None:
        """Begin a fresh recording; the previous track is discarded."""
        self._points.clear()
        self.enabled = True
        self.started_at = self.clock()

    def stop(self) -> None:
        """Stop recording. The track stays available until the next start()."""
        self.enabled = False

    def reset(self) -> None:
        self._points.clear()
        self.enabled = False
        self.heading = 0.0
        self._last_raw = None
        self.started_at = None

    def observe(self, coordinate: Coordinate, timestamp: datetime | None = None) -> TrackPoint | None:
        """Feed one raw sample. Returns the appended point, or None if filtered."""
        if self._last_raw is not None and self._last_raw != coordinate:
            self.heading = heading(self._last_raw.lat, self._last_raw.lng, coordinate.lat, coordinate.lng)
        self._last_raw = coordinate

        if not self.enabled:
            return None

        if self._points:
            last = self._points[-1]
            moved = haversine(last.coordinate.lat, last.coordinate.lng, coordinate.lat, coordinate.lng)
            if moved < self.min_displacement_m:
                return None

        ts = timestamp or self.clock()
        if self._points and ts < self._points[-1].timestamp:
            ts = self._points[-1].timestamp
        point = TrackPoint(timestamp=ts, coordinate=coordinate)
        self._points.append(point)
        return point

    def distance_m(self) -> float:
        return path_length([(p.coordinate.lat, p.coordinate.lng) for p in self._points])
