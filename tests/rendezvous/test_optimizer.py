from unittest.mock import AsyncMock, Mock

import pytest

from geo.distance import centroid, distance, path_length_km
from geo.osrm_client import OSRMServiceError
from geo.route_provider import RoutePathProvider, straight_line_path
from rendezvous.optimizer import (
    MINUTES_PER_KM,
    InvalidInputError,
    MeetingPointOptimizer,
    candidate_indices,
    estimate_minutes,
)
from tests.factories import RaisingProvider
from trip import Location


@pytest.mark.unit
class TestCandidateIndices:
    def test_eleven_point_path(self):
        assert candidate_indices(11) == list(range(11))

    def test_indices_are_floored(self):
        # floor(i / 10 * 4)
        assert candidate_indices(5) == [0, 0, 0, 1, 1, 2, 2, 2, 3, 3, 4]

    def test_single_point_path(self):
        assert candidate_indices(1) == [0] * 11


@pytest.mark.unit
def test_estimate_minutes():
    assert MINUTES_PER_KM == 3.0
    assert estimate_minutes(2.5) == 7.5


@pytest.mark.unit
class TestOptimize:
    async def test_rejects_trip_without_participants(self, sample_trip, straight_line_provider):
        trip = sample_trip.model_copy(update={"participants": []})
        optimizer = MeetingPointOptimizer(straight_line_provider)

        with pytest.raises(InvalidInputError):
            await optimizer.optimize(trip)

        assert straight_line_provider.calls == []

    async def test_result_shape(self, sample_trip, straight_line_provider):
        optimizer = MeetingPointOptimizer(straight_line_provider)

        result = await optimizer.optimize(sample_trip)

        assert result.initial_phase == "meeting"
        assert result.meeting_point.name == "Optimal Meeting Point"
        assert result.meeting_point.participant_ids == ["p1", "p2"]
        assert result.meeting_points == [result.meeting_point]
        assert len(result.candidates) == 11

        meeting_routes = [r for r in result.routes if r.phase == "meeting"]
        destination_routes = [r for r in result.routes if r.phase == "destination"]
        assert [r.participant_id for r in meeting_routes] == ["p1", "p2"]
        assert len(destination_routes) == 1
        assert destination_routes[0].participant_id is None
        assert destination_routes[0].to_location == sample_trip.destination.location

    async def test_meeting_point_lies_on_reference_path(self, sample_trip, straight_line_provider):
        optimizer = MeetingPointOptimizer(straight_line_provider)

        result = await optimizer.optimize(sample_trip)

        start = centroid([p.home_location for p in sample_trip.participants])
        reference = straight_line_path(start, sample_trip.destination.location)
        assert result.meeting_point.location in reference

    async def test_best_candidate_has_minimum_total(self, sample_trip, straight_line_provider):
        optimizer = MeetingPointOptimizer(straight_line_provider)

        result = await optimizer.optimize(sample_trip)

        best = min(result.candidates, key=lambda c: c.total_minutes)
        assert result.meeting_point.location == best.location

    async def test_ties_keep_earliest_candidate(self, sample_trip):
        class ConstantLengthProvider:
            """Every leg after the reference path has the same length."""

            def __init__(self):
                self.reference_served = False

            async def fetch_path(self, origin, destination):
                if not self.reference_served:
                    self.reference_served = True
                    return straight_line_path(origin, destination)
                return [Location(lat=0.0, lng=0.0), Location(lat=0.0, lng=0.01)]

        optimizer = MeetingPointOptimizer(ConstantLengthProvider())

        result = await optimizer.optimize(sample_trip)

        start = centroid([p.home_location for p in sample_trip.participants])
        assert len({c.total_minutes for c in result.candidates}) == 1
        assert result.meeting_point.location == start

    async def test_route_durations_follow_heuristic(self, sample_trip, straight_line_provider):
        optimizer = MeetingPointOptimizer(straight_line_provider)

        result = await optimizer.optimize(sample_trip)

        for route in result.routes:
            assert route.distance_km == pytest.approx(path_length_km(route.coordinates))
            assert route.duration_minutes == pytest.approx(route.distance_km * MINUTES_PER_KM)
            assert route.coordinates[0] == route.from_location
            assert route.coordinates[-1] == route.to_location

    async def test_single_participant(self, trip_factory, straight_line_provider):
        trip = trip_factory.create(homes=[(13.07, 80.26)], destination=(13.10, 80.30))
        home = trip.participants[0].home_location
        optimizer = MeetingPointOptimizer(straight_line_provider)

        result = await optimizer.optimize(trip)

        own_route = straight_line_path(home, trip.destination.location)
        assert result.meeting_point.location in own_route
        meeting_route = next(r for r in result.routes if r.phase == "meeting")
        assert meeting_route.distance_km == pytest.approx(
            distance(home, result.meeting_point.location), rel=1e-3, abs=1e-9
        )

    async def test_candidate_with_failed_fetch_is_discarded(self, sample_trip):
        blocked = straight_line_path(
            centroid([p.home_location for p in sample_trip.participants]),
            sample_trip.destination.location,
        )[3]
        provider = RaisingProvider(blocked={blocked})
        optimizer = MeetingPointOptimizer(provider)

        result = await optimizer.optimize(sample_trip)

        assert len(result.candidates) == 10
        assert all(c.location != blocked for c in result.candidates)
        assert result.meeting_point.location != blocked

    async def test_all_candidates_discarded_meets_at_centroid(self, sample_trip):
        provider = RaisingProvider(fail_all=True)
        optimizer = MeetingPointOptimizer(provider)

        result = await optimizer.optimize(sample_trip)

        expected = centroid([p.home_location for p in sample_trip.participants])
        assert result.candidates == []
        assert result.meeting_point.location == expected
        # Required legs still get straight-line geometry
        assert all(len(r.coordinates) == 11 for r in result.routes)

    async def test_routing_service_down_uses_fallbacks(self, sample_trip):
        osrm_client = Mock()
        osrm_client.get_route = AsyncMock(side_effect=OSRMServiceError("down"))
        provider = RoutePathProvider(osrm_client)
        optimizer = MeetingPointOptimizer(provider)

        result = await optimizer.optimize(sample_trip)

        assert len(result.candidates) == 11
        for route in result.routes:
            assert route.coordinates == straight_line_path(route.from_location, route.to_location)
        assert provider.fallbacks == provider.requests
