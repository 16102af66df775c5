"""Navigation session: the state machine behind search, routing and tracking.

One NavigationSession per user. It owns all session state; collaborators
(discovery, routing, location, speech, history) are injected. Everything runs
on a single asyncio loop, so state is mutated without locks; the only
suspension points are the outbound discovery/route calls.

Responses can complete out of order. Each suspending operation kind keeps a
monotonically increasing request number and only the latest request of a
kind may write its result into the session.
"""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Protocol

import config
from errors import NavigationError, StreamError, UnknownTargetError
from geo import haversine
from models import (
    ActiveRoute,
    Coordinate,
    DiscoveryBundle,
    District,
    Phase,
    PointOfInterest,
    PointStatus,
    RouteFragment,
    RouteHistory,
    SessionState,
    TrackPoint,
)
from speech import Announcer, LogAnnouncer
from tracker import TrackRecorder

logger = logging.getLogger(__name__)

CITY_TARGET_ID = "city"

DISCOVERY = "discovery"
ROUTE = "route"


# ---------- collaborator ports ----------

class DiscoveryPort(Protocol):
    async def resolve_place(self, query: str) -> Coordinate: ...
    async def discover(self, coordinate: Coordinate, label: str) -> DiscoveryBundle: ...
    async def suggest(self, query: str) -> list[str]: ...


class RoutePort(Protocol):
    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteFragment: ...


class LocationSource(Protocol):
    def watch(self) -> AsyncIterator[Coordinate]: ...
    async def current_position(self) -> Coordinate: ...


class HistoryStore(Protocol):
    def save_route_history(self, entry: RouteHistory) -> None: ...
    def get_route_history(self) -> list[RouteHistory]: ...


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NavigationSession:
    def __init__(
        self,
        discovery: DiscoveryPort,
        router: RoutePort,
        announcer: Announcer | None = None,
        recorder: TrackRecorder | None = None,
        location_source: LocationSource | None = None,
        history: HistoryStore | None = None,
        route_starts_tracking: bool = config.ROUTE_STARTS_TRACKING,
        arrival_radius_m: float = config.ARRIVAL_RADIUS_M,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.discovery = discovery
        self.router = router
        self.announcer = announcer or LogAnnouncer()
        self.recorder = recorder or TrackRecorder(clock=clock)
        self.location_source = location_source
        self.history_store = history
        self.route_starts_tracking = route_starts_tracking
        self.arrival_radius_m = arrival_radius_m
        self.clock = clock

        self.current_location: Coordinate | None = None
        self.map_focus: Coordinate | None = None
        self.location_available = True
        self.active_route: ActiveRoute | None = None
        self.selected_target_id: str | None = None
        self.points_of_interest: list[PointOfInterest] = []
        self.districts: list[District] = []
        self.city_label = ""
        self.city_population_label = ""
        self.city_center: Coordinate | None = None

        self._outcome: Phase | None = None
        self._loading = 0
        self._latest: dict[str, int] = {DISCOVERY: 0, ROUTE: 0}
        self._watch_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def tracking_enabled(self) -> bool:
        return self.recorder.enabled

    @property
    def loading(self) -> bool:
        return self._loading > 0

    @property
    def phase(self) -> Phase:
        if self.tracking_enabled:
            return Phase.TRACKING
        if self.active_route is not None:
            return Phase.PREVIEWING
        return self._outcome or Phase.IDLE

    @property
    def track(self) -> list[TrackPoint]:
        return self.recorder.points

    @property
    def heading(self) -> float:
        return self.recorder.heading

    def snapshot(self) -> SessionState:
        return SessionState(
            phase=self.phase,
            current_location=self.current_location,
            map_focus=self.map_focus,
            heading=self.heading,
            tracking_enabled=self.tracking_enabled,
            location_available=self.location_available,
            active_route=self.active_route.model_copy(deep=True) if self.active_route else None,
            selected_target_id=self.selected_target_id,
            points_of_interest=[p.model_copy() for p in self.points_of_interest],
            districts=[d.model_copy() for d in self.districts],
            city_label=self.city_label,
            city_population_label=self.city_population_label,
            city_center=self.city_center,
            loading=self.loading,
            track=self.track,
        )

    # ------------------------------------------------------------------
    # Request bookkeeping
    # ------------------------------------------------------------------

    def _issue(self, kind: str) -> int:
        self._latest[kind] += 1
        return self._latest[kind]

    def _is_latest(self, kind: str, seq: int) -> bool:
        return self._latest[kind] == seq

    @contextmanager
    def _loading_scope(self):
        self._loading += 1
        try:
            yield
        finally:
            self._loading -= 1

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def search(self, query: str) -> bool:
        """Resolve a place and load its points of interest and districts.

        Returns True when the result was applied, False when a newer search
        superseded this one. Errors of the latest search propagate with the
        session untouched; errors of superseded searches are dropped.
        """
        seq = self._issue(DISCOVERY)
        with self._loading_scope():
            try:
                center = await self.discovery.resolve_place(query)
                if not self._is_latest(DISCOVERY, seq):
                    logger.info("Search %r superseded after geocoding", query)
                    return False
                bundle = await self.discovery.discover(center, query.strip())
            except NavigationError as exc:
                if not self._is_latest(DISCOVERY, seq):
                    logger.info("Ignoring failure of superseded search %r: %s", query, exc)
                    return False
                logger.warning("Search %r failed: %s", query, exc)
                raise

            if not self._is_latest(DISCOVERY, seq):
                logger.info("Discarding stale discovery for %r", query)
                return False
            self._apply_discovery(center, bundle, query.strip())
            return True

    async def locate(self, position: Coordinate | None = None) -> bool:
        """Center on the device position and discover around it.

        Without an explicit position the location source is asked once. An
        unavailable position is absorbed: the session keeps working without one.
        """
        if position is None:
            if self.location_source is None:
                logger.warning("No location source configured")
                self.location_available = False
                return False
            try:
                position = await self.location_source.current_position()
            except StreamError as exc:
                logger.warning("Current position unavailable: %s", exc)
                self.location_available = False
                return False

        self.update_location(position)
        self.map_focus = position

        seq = self._issue(DISCOVERY)
        with self._loading_scope():
            try:
                bundle = await self.discovery.discover(position, config.CURRENT_LOCATION_LABEL)
            except NavigationError as exc:
                if not self._is_latest(DISCOVERY, seq):
                    return False
                logger.warning("Discovery around current position failed: %s", exc)
                raise
            if not self._is_latest(DISCOVERY, seq):
                return False
            self._apply_discovery(position, bundle, config.CURRENT_LOCATION_LABEL)
            return True

    async def suggest(self, query: str) -> list[str]:
        return await self.discovery.suggest(query)

    def _apply_discovery(self, center: Coordinate, bundle: DiscoveryBundle, label: str) -> None:
        self.points_of_interest = [
            PointOfInterest(
                id=_new_id(),
                name=seed.name,
                category=seed.category,
                coordinate=seed.coordinate,
                address=seed.address,
            )
            for seed in bundle.businesses
        ]
        self.districts = [
            District(
                id=_new_id(),
                name=seed.name,
                coordinate=seed.coordinate,
                description=seed.description,
                population=seed.population,
            )
            for seed in bundle.districts
        ]
        self.city_label = bundle.city_name or label
        self.city_population_label = bundle.city_population or config.UNKNOWN_POPULATION_LABEL
        self.city_center = center
        self.map_focus = center

        if self.active_route and self._find_target(self.active_route.target_id) is None:
            logger.info("Active route to %s invalidated by new discovery", self.active_route.target_name)
            self.active_route = None
            self.selected_target_id = None
        # Route requests in flight point at ids that no longer exist.
        self._issue(ROUTE)

        logger.info(
            "Loaded %s: %d points of interest, %d districts",
            self.city_label, len(self.points_of_interest), len(self.districts),
        )
        self.announcer.announce(f"Loaded {self.city_label}.")

    # ------------------------------------------------------------------
    # Targets and routes
    # ------------------------------------------------------------------

    def _find_target(self, target_id: str) -> PointOfInterest | District | None:
        for poi in self.points_of_interest:
            if poi.id == target_id:
                return poi
        for district in self.districts:
            if district.id == target_id:
                return district
        if target_id == CITY_TARGET_ID and self.city_center is not None:
            return District(id=CITY_TARGET_ID, name=self.city_label, coordinate=self.city_center)
        return None

    async def select_target(self, target_id: str) -> ActiveRoute | None:
        """Route from the current location to a target.

        Without a known location only the map focus moves. A failed route
        leaves the previous one in place; callers retry by selecting again.
        """
        target = self._find_target(target_id)
        if target is None:
            raise UnknownTargetError(f"Unknown target {target_id}")

        if self.current_location is None:
            logger.info("No current location, focusing %s without routing", target.name)
            self.map_focus = target.coordinate
            return None

        seq = self._issue(ROUTE)
        with self._loading_scope():
            try:
                fragment = await self.router.route(self.current_location, target.coordinate)
            except NavigationError as exc:
                if not self._is_latest(ROUTE, seq):
                    logger.info("Ignoring failure of superseded route to %s: %s", target.name, exc)
                    return None
                logger.warning("Route to %s failed: %s", target.name, exc)
                raise

        if not self._is_latest(ROUTE, seq) or self._find_target(target_id) is None:
            logger.info("Discarding stale route to %s", target.name)
            return None

        self.active_route = ActiveRoute(
            target_id=target_id,
            target_name=target.name,
            distance_text=fragment.distance_text,
            duration_text=fragment.duration_text,
            distance_m=fragment.distance_m,
            duration_s=fragment.duration_s,
            estimated_arrival=fragment.estimated_arrival,
            geometry=fragment.geometry,
        )
        self.selected_target_id = target_id
        self.map_focus = target.coordinate
        self._outcome = None
        self.announcer.announce(f"Route to {target.name}: {fragment.distance_text}.")

        if self.route_starts_tracking and not self.tracking_enabled:
            self.start_tracking()
        return self.active_route

    def clear_route(self) -> bool:
        """Cancel the current route. The recorded track is kept."""
        self._issue(ROUTE)
        if self.active_route is None:
            return False
        self._drop_route(Phase.CANCELLED)
        if self.route_starts_tracking and self.tracking_enabled:
            self.stop_tracking()
        return True

    def _drop_route(self, outcome: Phase) -> None:
        logger.info("Route to %s ended: %s", self.active_route.target_name, outcome.value)
        self.active_route = None
        self.selected_target_id = None
        self._outcome = outcome

    # ------------------------------------------------------------------
    # Point of interest status
    # ------------------------------------------------------------------

    def report_point_status(self, point_id: str, status: PointStatus | str) -> bool:
        """Mark a point as success/failure. Unknown ids are ignored."""
        status = PointStatus(status)
        if status is PointStatus.PENDING:
            raise ValueError("status can only be set to success or failure")

        poi = next((p for p in self.points_of_interest if p.id == point_id), None)
        if poi is None:
            logger.info("Status %s for unknown point %s ignored", status.value, point_id)
            return False

        poi.status = status
        self.announcer.announce(
            "Recorded successfully." if status is PointStatus.SUCCESS else "Failure recorded."
        )
        return True

    # ------------------------------------------------------------------
    # Tracking and location
    # ------------------------------------------------------------------

    def start_tracking(self) -> None:
        if self.tracking_enabled:
            return
        self.recorder.start()
        self._subscribe()
        logger.info("Tracking started")
        self.announcer.announce("Journey started. Tracking active.")

    def stop_tracking(self) -> None:
        if not self.tracking_enabled:
            return
        self.recorder.stop()
        self._unsubscribe()
        self._save_history()
        if self.route_starts_tracking and self.active_route is not None:
            self._drop_route(Phase.CANCELLED)
        logger.info("Tracking stopped with %d track points", len(self.recorder))
        self.announcer.announce("Journey finished.")

    def update_location(self, coordinate: Coordinate) -> None:
        """Apply one position sample. Pure state update, never raises."""
        self.current_location = coordinate
        self.location_available = True
        self.recorder.observe(coordinate, self.clock())
        self._check_arrival(coordinate)

    def _check_arrival(self, coordinate: Coordinate) -> None:
        if self.active_route is None:
            return
        target = self._find_target(self.active_route.target_id)
        if target is None:
            self._drop_route(Phase.CANCELLED)
            return
        distance = haversine(coordinate.lat, coordinate.lng, target.coordinate.lat, target.coordinate.lng)
        if distance > self.arrival_radius_m:
            return
        if isinstance(target, District) and target.id != CITY_TARGET_ID:
            target.covered = True
        self._drop_route(Phase.ARRIVED)
        self.announcer.announce(f"Arrived at {target.name}.")

    def _subscribe(self) -> None:
        if self.location_source is None or self._watch_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, location stream not subscribed")
            return
        self._watch_task = loop.create_task(self._consume(self.location_source))

    def _unsubscribe(self) -> asyncio.Task | None:
        task, self._watch_task = self._watch_task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _consume(self, source: LocationSource) -> None:
        stream = source.watch()
        try:
            async for coordinate in stream:
                self.update_location(coordinate)
        except StreamError as exc:
            logger.warning("Location stream ended: %s", exc)
            self.location_available = False
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    # ------------------------------------------------------------------
    # History and lifecycle
    # ------------------------------------------------------------------

    def _save_history(self) -> None:
        points = self.recorder.points
        if self.history_store is None or not points:
            return
        started = self.recorder.started_at or points[0].timestamp
        ended = points[-1].timestamp
        entry = RouteHistory(
            id=_new_id(),
            date=started.date().isoformat(),
            start_time=started.strftime("%H:%M:%S"),
            end_time=ended.strftime("%H:%M:%S"),
            distance_km=round(self.recorder.distance_m() / 1000, 3),
            path=[p.coordinate for p in points],
        )
        try:
            self.history_store.save_route_history(entry)
        except Exception:
            logger.exception("Failed to save journey %s", entry.id)

    def history(self) -> list[RouteHistory]:
        if self.history_store is None:
            return []
        return self.history_store.get_route_history()

    def reset(self) -> None:
        """Drop all session state, including the recorded track."""
        self._issue(DISCOVERY)
        self._issue(ROUTE)
        self._unsubscribe()
        self.recorder.reset()
        self.map_focus = self.current_location
        self.active_route = None
        self.selected_target_id = None
        self.points_of_interest = []
        self.districts = []
        self.city_label = ""
        self.city_population_label = ""
        self.city_center = None
        self._outcome = None
        logger.info("Session reset")

    async def close(self) -> None:
        """Release the location subscription and wait for pending announcements."""
        task = self._unsubscribe()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        aclose = getattr(self.announcer, "aclose", None)
        if aclose is not None:
            await aclose()
