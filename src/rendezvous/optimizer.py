"""Meeting point search along the centroid -> destination road path.

The search is a bounded heuristic: candidates are sampled at eleven evenly
spaced path indices and scored by the total estimated travel time of every
participant (participant -> candidate -> destination). It does not guarantee
a global optimum.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Protocol

from core.exceptions import ValidationError
from geo.distance import centroid, path_length_km
from geo.route_provider import RoutingUnavailable, straight_line_path
from trip import Location, MeetingPoint, Phase, Route, Trip

logger = logging.getLogger(__name__)

# Fixed travel-time heuristic shared by candidate scoring and route durations
MINUTES_PER_KM = 3.0

# Candidates at ratios 0/10 .. 10/10 of the reference path
CANDIDATE_DIVISIONS = 10

MEETING_ROUTE_COLOR = 0
DESTINATION_ROUTE_COLOR = 1


class InvalidInputError(ValidationError):
    """Trip cannot be optimized (no participants)."""

    pass


class PathProvider(Protocol):
    async def fetch_path(self, origin: Location, destination: Location) -> list[Location]: ...


@dataclass
class CandidateScore:
    index: int
    location: Location
    total_minutes: float


@dataclass
class OptimizationResult:
    meeting_point: MeetingPoint
    routes: list[Route]
    initial_phase: Phase = "meeting"
    candidates: list[CandidateScore] = field(default_factory=list)

    @property
    def meeting_points(self) -> list[MeetingPoint]:
        return [self.meeting_point]


def estimate_minutes(distance_km: float) -> float:
    return distance_km * MINUTES_PER_KM


def candidate_indices(path_length: int, divisions: int = CANDIDATE_DIVISIONS) -> list[int]:
    """Path indices for ratios 0/divisions .. divisions/divisions (floored)."""
    last = path_length - 1
    return [math.floor(i / divisions * last) for i in range(divisions + 1)]


def validate_trip(trip: Trip) -> None:
    if not trip.participants:
        raise InvalidInputError("Trip has no participants", details={"trip_id": trip.id})


class MeetingPointOptimizer:
    """Selects a single rendezvous point minimizing total estimated travel time."""

    def __init__(self, path_provider: PathProvider):
        self.path_provider = path_provider

    async def optimize(self, trip: Trip) -> OptimizationResult:
        validate_trip(trip)

        destination = trip.destination.location
        homes = [p.home_location for p in trip.participants]
        start = centroid(homes)

        reference_path = await self._leg_path(start, destination)
        candidates = [reference_path[i] for i in candidate_indices(len(reference_path))]

        best_location = start
        best_minutes = math.inf
        scores: list[CandidateScore] = []

        for index, candidate in enumerate(candidates):
            total = await self._score_candidate(trip, candidate, destination)
            if total is None:
                logger.debug("Candidate %d discarded after a routing failure", index)
                continue

            scores.append(CandidateScore(index=index, location=candidate, total_minutes=total))
            if total < best_minutes:
                best_minutes = total
                best_location = candidate

        if not scores:
            logger.warning("All candidates discarded for trip %s, meeting at centroid", trip.id)

        logger.info(
            "Meeting point for trip %s at (%.6f, %.6f), total %.1f min over %d candidates",
            trip.id,
            best_location.lat,
            best_location.lng,
            best_minutes,
            len(scores),
        )

        meeting_point = MeetingPoint(
            location=best_location,
            participant_ids=[p.id for p in trip.participants],
        )
        routes = await self._build_routes(trip, best_location, destination)
        return OptimizationResult(meeting_point=meeting_point, routes=routes, candidates=scores)

    async def _leg_path(self, origin: Location, destination: Location) -> list[Location]:
        """Path for a leg the result depends on; a raising provider degrades to a straight line."""
        try:
            return await self.path_provider.fetch_path(origin, destination)
        except RoutingUnavailable as e:
            logger.warning("Path provider raised for a required leg, using straight line: %s", e)
            return straight_line_path(origin, destination)

    async def _score_candidate(
        self, trip: Trip, candidate: Location, destination: Location
    ) -> float | None:
        """Total minutes for every participant via candidate, None if a fetch raised."""
        total = 0.0
        try:
            for participant in trip.participants:
                to_meeting = await self.path_provider.fetch_path(participant.home_location, candidate)
                to_destination = await self.path_provider.fetch_path(candidate, destination)
                total += estimate_minutes(path_length_km(to_meeting))
                total += estimate_minutes(path_length_km(to_destination))
        except RoutingUnavailable:
            return None
        return total

    async def _build_routes(
        self, trip: Trip, meeting_location: Location, destination: Location
    ) -> list[Route]:
        routes: list[Route] = []
        for participant in trip.participants:
            path = await self._leg_path(participant.home_location, meeting_location)
            routes.append(
                self._route(
                    name=f"{participant.name or participant.id} to Meeting Point",
                    path=path,
                    origin=participant.home_location,
                    destination=meeting_location,
                    phase="meeting",
                    participant_id=participant.id,
                    color_index=MEETING_ROUTE_COLOR,
                )
            )

        path = await self._leg_path(meeting_location, destination)
        routes.append(
            self._route(
                name="Meeting Point to Destination",
                path=path,
                origin=meeting_location,
                destination=destination,
                phase="destination",
                color_index=DESTINATION_ROUTE_COLOR,
            )
        )
        return routes

    @staticmethod
    def _route(
        name: str,
        path: list[Location],
        origin: Location,
        destination: Location,
        phase: Phase,
        participant_id: str | None = None,
        color_index: int = 0,
    ) -> Route:
        distance_km = path_length_km(path)
        return Route(
            name=name,
            from_location=origin,
            to_location=destination,
            coordinates=path,
            distance_km=distance_km,
            duration_minutes=estimate_minutes(distance_km),
            phase=phase,
            participant_id=participant_id,
            color_index=color_index,
        )
