import asyncio
from datetime import UTC, datetime, timedelta

import aiohttp
import pytest
from http_fakes import FakeResponse, FakeSession, osrm_match_body

from core.exceptions import (
    EngineUnavailableError,
    InsufficientPointsError,
    MatchInProgressError,
    MatchPersistenceError,
    MaxAttemptsReachedError,
    TripNotFoundError,
)
from core.http.osrm import OsrmClient
from db.models import Trip, TripGpsPoint
from trips.models import MatchOutcome
from trips.services.match_store import TripMatchStore
from trips.services.road_matcher import OsrmRoadMatcher
from trips.services.route_matching import TripRouteMatcher, distance_change_pct
from trips.state import MatchStatus

START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


async def seed_trip(trip_id: str = "trip-1", *, points: int = 5, **fields) -> None:
    fields.setdefault("haversine_distance_km", 2.0)
    await Trip(trip_id=trip_id, **fields).insert()
    for i in range(points):
        await TripGpsPoint(
            trip_id=trip_id,
            sequence_order=i,
            latitude=32.0 + i * 0.001,
            longitude=-97.0 - i * 0.001,
            accuracy=8.0,
            captured_at=START + timedelta(seconds=15 * i),
        ).insert()


async def load_trip(trip_id: str = "trip-1") -> Trip:
    return await Trip.find_one(Trip.trip_id == trip_id)


def osrm_service(*responses) -> tuple[TripRouteMatcher, FakeSession]:
    session = FakeSession(get_responses=list(responses))
    matcher = OsrmRoadMatcher(OsrmClient("http://osrm.test:5000", session=session))
    return TripRouteMatcher(matcher=matcher), session


class RecordingMatcher:
    def __init__(self, outcome: MatchOutcome) -> None:
        self.outcome = outcome
        self.calls = 0

    async def match(self, points, reference_distance_km):
        self.calls += 1
        return self.outcome


@pytest.mark.asyncio
async def test_successful_match_stores_route(beanie_db) -> None:
    await seed_trip()
    service, session = osrm_service(
        FakeResponse(json_data=osrm_match_body(distance=2500.0, confidence=0.87)),
    )

    response = await service.attempt_match("trip-1")

    assert response.success is True
    assert response.match_status == MatchStatus.MATCHED
    assert response.road_distance_km == 2.5
    assert response.match_confidence == 0.87
    assert response.geometry_points == 3
    assert response.haversine_distance_km == 2.0
    assert response.distance_change_pct == 25.0
    assert len(session.requests) == 1

    trip = await load_trip()
    assert trip.match_status == MatchStatus.MATCHED
    assert trip.match_attempts == 1
    assert trip.route_geometry["type"] == "LineString"
    assert trip.match_error is None


@pytest.mark.asyncio
async def test_no_match_stores_failure(beanie_db) -> None:
    await seed_trip()
    service, _ = osrm_service(
        FakeResponse(status=400, json_data={"code": "NoMatch", "message": "no"}),
    )

    response = await service.attempt_match("trip-1")

    assert response.success is False
    assert response.match_status == MatchStatus.FAILED
    assert response.road_distance_km is None
    assert response.distance_change_pct is None
    assert "reason" not in response.to_payload()

    trip = await load_trip()
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_error == "OSRM error: NoMatch"
    assert trip.match_attempts == 1
    assert trip.route_geometry is None


@pytest.mark.asyncio
async def test_walking_trip_is_skipped_without_writes(beanie_db) -> None:
    await seed_trip(transport_mode="walking", match_attempts=1)
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))
    service = TripRouteMatcher(matcher=matcher)

    first = await service.attempt_match("trip-1")
    second = await service.attempt_match("trip-1")

    assert first == second
    assert first.success is True
    assert first.match_status == MatchStatus.SKIPPED
    assert first.reason == "Walking trips do not require road matching"
    assert matcher.calls == 0

    trip = await load_trip()
    assert trip.match_status == MatchStatus.PENDING
    assert trip.match_attempts == 1


@pytest.mark.asyncio
async def test_exhausted_budget_is_rejected_without_writes(beanie_db) -> None:
    await seed_trip(match_status=MatchStatus.FAILED, match_attempts=3, match_error="x")
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))
    service = TripRouteMatcher(matcher=matcher)

    for _ in range(2):
        with pytest.raises(MaxAttemptsReachedError):
            await service.attempt_match("trip-1")

    trip = await load_trip()
    assert matcher.calls == 0
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_attempts == 3
    assert trip.match_error == "x"


@pytest.mark.asyncio
async def test_insufficient_points_consumes_an_attempt(beanie_db) -> None:
    await seed_trip(points=2)
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))
    service = TripRouteMatcher(matcher=matcher)

    with pytest.raises(InsufficientPointsError) as raised:
        await service.attempt_match("trip-1")

    assert raised.value.message == "Insufficient GPS points: 2 (minimum 3)"
    assert matcher.calls == 0
    trip = await load_trip()
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_attempts == 1
    assert trip.match_error == "Insufficient GPS points: 2 (minimum 3)"


@pytest.mark.asyncio
async def test_unknown_trip_raises_not_found(beanie_db) -> None:
    service = TripRouteMatcher(matcher=RecordingMatcher(MatchOutcome.failure("x")))

    with pytest.raises(TripNotFoundError):
        await service.attempt_match("missing")


@pytest.mark.asyncio
async def test_unconfigured_engine_fails_before_reading_trip(
    beanie_db,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("OSRM_BASE_URL", raising=False)
    await seed_trip()

    with pytest.raises(EngineUnavailableError) as raised:
        await TripRouteMatcher().attempt_match("trip-1")

    assert raised.value.code == "OSRM_UNAVAILABLE"
    trip = await load_trip()
    assert trip.match_status == MatchStatus.PENDING
    assert trip.match_attempts == 0


@pytest.mark.asyncio
async def test_configured_engine_url_reaches_matcher_factory(beanie_db) -> None:
    await seed_trip()
    seen: list[str] = []
    outcome = MatchOutcome.failure("OSRM error: NoSegment")

    def factory(base_url: str):
        seen.append(base_url)
        return RecordingMatcher(outcome)

    response = await TripRouteMatcher(matcher_factory=factory).attempt_match("trip-1")

    assert seen == ["http://osrm.test:5000"]
    assert response.match_status == MatchStatus.FAILED


@pytest.mark.asyncio
async def test_engine_unavailable_records_failure_and_raises(beanie_db) -> None:
    await seed_trip()
    service, _ = osrm_service(aiohttp.ClientConnectionError("refused"))

    with pytest.raises(EngineUnavailableError):
        await service.attempt_match("trip-1")

    trip = await load_trip()
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_attempts == 1
    assert trip.match_error.startswith("OSRM request failed")


@pytest.mark.asyncio
async def test_attempts_never_exceed_budget(beanie_db) -> None:
    await seed_trip()
    outcome = MatchOutcome.failure("OSRM error: NoMatch")
    matcher = RecordingMatcher(outcome)
    service = TripRouteMatcher(matcher=matcher)

    for _ in range(3):
        response = await service.attempt_match("trip-1")
        assert response.match_status == MatchStatus.FAILED
    with pytest.raises(MaxAttemptsReachedError):
        await service.attempt_match("trip-1")

    trip = await load_trip()
    assert trip.match_attempts == 3
    assert matcher.calls == 3


@pytest.mark.asyncio
async def test_already_matched_trip_is_returned_unchanged(beanie_db) -> None:
    await seed_trip(
        match_status=MatchStatus.MATCHED,
        match_attempts=1,
        road_distance_km=3.0,
        match_confidence=0.8,
        route_geometry={"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
    )
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))

    response = await TripRouteMatcher(matcher=matcher).attempt_match("trip-1")

    assert response.success is True
    assert response.match_status == MatchStatus.MATCHED
    assert response.reason == "Trip already matched"
    assert response.geometry_points == 2
    assert response.distance_change_pct == 50.0
    assert matcher.calls == 0
    trip = await load_trip()
    assert trip.match_attempts == 1


@pytest.mark.asyncio
async def test_fresh_processing_attempt_blocks_new_attempt(beanie_db) -> None:
    await seed_trip(
        match_status=MatchStatus.PROCESSING,
        match_started_at=datetime.now(UTC),
        match_lease_id="lease-a",
    )
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))

    with pytest.raises(MatchInProgressError):
        await TripRouteMatcher(matcher=matcher).attempt_match("trip-1")

    trip = await load_trip()
    assert matcher.calls == 0
    assert trip.match_lease_id == "lease-a"


@pytest.mark.asyncio
async def test_stale_processing_attempt_is_taken_over(beanie_db) -> None:
    await seed_trip(
        match_status=MatchStatus.PROCESSING,
        match_started_at=datetime.now(UTC) - timedelta(hours=1),
        match_lease_id="lease-a",
    )
    service, _ = osrm_service(FakeResponse(json_data=osrm_match_body()))

    response = await service.attempt_match("trip-1")

    trip = await load_trip()
    assert response.match_status == MatchStatus.MATCHED
    assert trip.match_status == MatchStatus.MATCHED
    assert trip.match_attempts == 1
    assert trip.match_lease_id is None


@pytest.mark.asyncio
async def test_point_fetch_timeout_records_failure(beanie_db) -> None:
    await seed_trip()

    class SlowPointSource:
        async def fetch_points(self, trip_id):
            await asyncio.sleep(1)
            return []

    matcher = RecordingMatcher(MatchOutcome.failure("unused"))
    service = TripRouteMatcher(
        point_source=SlowPointSource(),
        matcher=matcher,
        point_fetch_timeout=0.01,
    )

    response = await service.attempt_match("trip-1")

    assert response.match_status == MatchStatus.FAILED
    assert matcher.calls == 0
    trip = await load_trip()
    assert trip.match_attempts == 1
    assert trip.match_error == "GPS point fetch timed out after 0.01s"


@pytest.mark.asyncio
async def test_lost_commit_raises_persistence_error(beanie_db) -> None:
    await seed_trip()

    class HijackingMatcher:
        async def match(self, points, reference_distance_km):
            await Trip.get_motor_collection().update_one(
                {"trip_id": "trip-1"},
                {"$set": {"match_lease_id": "someone-else"}},
            )
            return MatchOutcome.failure("OSRM error: NoMatch")

    with pytest.raises(MatchPersistenceError) as raised:
        await TripRouteMatcher(matcher=HijackingMatcher()).attempt_match("trip-1")

    assert raised.value.code == "INTERNAL_ERROR"
    trip = await load_trip()
    assert trip.match_status == MatchStatus.PROCESSING
    assert trip.match_attempts == 0


@pytest.mark.parametrize(
    ("road", "haversine", "expected"),
    [
        (2.5, 2.0, 25.0),
        (1.0, 3.0, -66.7),
        (2.125, 2.0, 6.3),
        (1.875, 2.0, -6.2),
        (None, 2.0, None),
        (2.0, 0.0, None),
    ],
)
def test_distance_change_pct(road, haversine, expected) -> None:
    assert distance_change_pct(road, haversine) == expected


@pytest.mark.asyncio
async def test_ten_point_trip_reports_distance_change(beanie_db) -> None:
    await seed_trip(points=10, haversine_distance_km=10.0)
    service, session = osrm_service(
        FakeResponse(
            json_data=osrm_match_body(distance=10800.0, confidence=0.92, tracepoints=10),
        ),
    )

    response = await service.attempt_match("trip-1")

    assert response.success is True
    assert response.match_status == MatchStatus.MATCHED
    assert response.road_distance_km == 10.8
    assert response.match_confidence == 0.92
    assert response.distance_change_pct == 8.0
    assert len(session.requests[0][2]["params"]["radiuses"].split(";")) == 10


@pytest.mark.asyncio
async def test_concurrent_attempts_advance_counter_once(beanie_db) -> None:
    await seed_trip()

    class YieldingMatcher:
        def __init__(self) -> None:
            self.calls = 0

        async def match(self, points, reference_distance_km):
            self.calls += 1
            await asyncio.sleep(0)
            return MatchOutcome.failure("OSRM error: NoMatch")

    matcher = YieldingMatcher()
    service = TripRouteMatcher(matcher=matcher)

    results = await asyncio.gather(
        service.attempt_match("trip-1"),
        service.attempt_match("trip-1"),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    responses = [r for r in results if not isinstance(r, Exception)]
    assert len(responses) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], MatchInProgressError)
    assert matcher.calls == 1

    trip = await load_trip()
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_attempts == 1


@pytest.mark.asyncio
async def test_skipped_trip_is_returned_unchanged(beanie_db) -> None:
    await seed_trip(match_status=MatchStatus.SKIPPED, transport_mode="driving")
    matcher = RecordingMatcher(MatchOutcome.failure("unused"))

    response = await TripRouteMatcher(matcher=matcher).attempt_match("trip-1")

    assert response.success is True
    assert response.match_status == MatchStatus.SKIPPED
    assert response.reason == "Trip matching was skipped"
    assert matcher.calls == 0
    trip = await load_trip()
    assert trip.match_status == MatchStatus.SKIPPED
    assert trip.match_attempts == 0
    assert trip.match_lease_id is None


@pytest.mark.asyncio
async def test_raising_matcher_records_failure(beanie_db) -> None:
    await seed_trip()

    class BrokenMatcher:
        async def match(self, points, reference_distance_km):
            msg = "backend exploded"
            raise RuntimeError(msg)

    response = await TripRouteMatcher(matcher=BrokenMatcher()).attempt_match("trip-1")

    assert response.success is False
    assert response.match_status == MatchStatus.FAILED
    trip = await load_trip()
    assert trip.match_status == MatchStatus.FAILED
    assert trip.match_attempts == 1
    assert trip.match_error == "Road matching failed: backend exploded"
    assert trip.match_lease_id is None


@pytest.mark.asyncio
async def test_point_source_error_records_failure(beanie_db) -> None:
    await seed_trip()

    class FailingPointSource:
        async def fetch_points(self, trip_id):
            msg = "cursor died"
            raise RuntimeError(msg)

    matcher = RecordingMatcher(MatchOutcome.failure("unused"))
    service = TripRouteMatcher(point_source=FailingPointSource(), matcher=matcher)

    response = await service.attempt_match("trip-1")

    assert response.match_status == MatchStatus.FAILED
    assert matcher.calls == 0
    trip = await load_trip()
    assert trip.match_attempts == 1
    assert trip.match_error == "Failed to fetch GPS points: cursor died"


@pytest.mark.asyncio
async def test_store_error_on_commit_raises_persistence_error(beanie_db) -> None:
    await seed_trip()

    class FailingCommitStore(TripMatchStore):
        async def commit_outcome(self, *args, **kwargs):
            msg = "write concern timeout"
            raise RuntimeError(msg)

    service = TripRouteMatcher(
        store=FailingCommitStore(),
        matcher=RecordingMatcher(MatchOutcome.failure("OSRM error: NoMatch")),
    )

    with pytest.raises(MatchPersistenceError) as raised:
        await service.attempt_match("trip-1")

    assert raised.value.code == "INTERNAL_ERROR"
    assert "write concern timeout" in raised.value.message
    trip = await load_trip()
    assert trip.match_status == MatchStatus.PROCESSING
    assert trip.match_attempts == 0
