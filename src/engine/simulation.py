"""Two-phase trip simulation as a pure state transition.

``advance`` never mutates its input: each call returns a new Trip snapshot
with every participant moved one tick along its active route. Wall-clock
scheduling lives in ``engine.tick_scheduler`` and ``engine.replay``.

Route following keeps a per-participant cursor into the active route. Each
tick finds the nearest sample at or past the cursor and steps toward the one
after it, so geometry that doubles back is walked in order. This
approximates arc-length interpolation; it may cut corners on dense geometry
but always lands exactly on the phase target through the arrival snap.
"""

import logging
from collections.abc import Callable

from core.exceptions import StateError
from geo.distance import closest_index, distance, step_toward
from settings import ALLOWED_SPEED_MULTIPLIERS
from trip import Location, Participant, Trip

logger = logging.getLogger(__name__)

BASE_STEP_SIZE_KM = 0.05
BASE_TICK_INTERVAL_MS = 100
# Same unit as the haversine output (km)
ARRIVAL_THRESHOLD_KM = 1e-4
SPEED_MULTIPLIERS = ALLOWED_SPEED_MULTIPLIERS


class SimulationInconsistency(StateError):
    """A participant has no resolvable route for the current phase."""

    pass


InconsistencyHandler = Callable[[SimulationInconsistency], None]


def tick_interval_seconds(speed_multiplier: float) -> float:
    """Wall-clock cadence of the tick loop at the given speed."""
    return BASE_TICK_INTERVAL_MS / speed_multiplier / 1000.0


def _log_inconsistency(error: SimulationInconsistency) -> None:
    logger.warning(error.message, extra=error.details)


def _phase_target(trip: Trip, participant: Participant) -> Location | None:
    if trip.phase == "meeting":
        meeting_point = trip.meeting_point_for(participant.id)
        return meeting_point.location if meeting_point else None
    return trip.destination.location


def _at_phase_target(trip: Trip, participant: Participant) -> bool:
    if participant.has_reached_destination:
        return True
    if trip.phase == "meeting":
        return participant.has_reached_meeting_point
    return False


def _advance_participant(
    trip: Trip,
    participant: Participant,
    step_size_km: float,
    on_inconsistency: InconsistencyHandler,
) -> Participant:
    if _at_phase_target(trip, participant):
        return participant

    target = _phase_target(trip, participant)
    if target is None:
        # No meeting point assigned: trivially satisfied, nothing to walk toward
        return participant

    route = trip.route_for(participant.id)
    if route is None or not route.coordinates:
        on_inconsistency(
            SimulationInconsistency(
                f"No {trip.phase} route for participant {participant.id}",
                details={"participant_id": participant.id, "phase": trip.phase},
            )
        )
        return participant

    position = participant.position
    route_index = participant.route_index
    if distance(position, target) < ARRIVAL_THRESHOLD_KM:
        # Already there (zero-length leg): arrive without touring the geometry
        new_position = target
    else:
        coordinates = route.coordinates
        last_index = len(coordinates) - 1
        cursor = min(route_index, last_index)
        # Only samples at or past the cursor count, so a path that doubles back stays ordered
        nearest = cursor + closest_index(coordinates[cursor:], position)
        next_index = min(nearest + 1, last_index)
        new_position = step_toward(position, coordinates[next_index], step_size_km)
        if distance(new_position, coordinates[next_index]) < ARRIVAL_THRESHOLD_KM:
            route_index = next_index
        else:
            route_index = nearest

    update: dict[str, object] = {"current_location": new_position, "route_index": route_index}
    if distance(new_position, target) < ARRIVAL_THRESHOLD_KM:
        update["current_location"] = target
        if trip.phase == "meeting":
            update["has_reached_meeting_point"] = True
        else:
            update["has_reached_destination"] = True

    return participant.model_copy(update=update)


def meeting_phase_complete(trip: Trip) -> bool:
    return all(
        p.has_reached_meeting_point or trip.meeting_point_for(p.id) is None
        for p in trip.participants
    )


def is_terminal(trip: Trip) -> bool:
    return trip.phase == "destination" and trip.is_complete and not trip.is_simulating


def advance(
    trip: Trip,
    speed_multiplier: float = 1,
    on_inconsistency: InconsistencyHandler | None = None,
) -> Trip:
    """Advance every participant by one tick and evaluate phase completion."""
    if is_terminal(trip):
        return trip

    handler = on_inconsistency or _log_inconsistency
    step_size_km = BASE_STEP_SIZE_KM * speed_multiplier
    participants = [
        _advance_participant(trip, participant, step_size_km, handler)
        for participant in trip.participants
    ]
    updated = trip.model_copy(
        update={"participants": participants, "simulation_step": trip.simulation_step + 1}
    )

    if updated.phase == "meeting":
        if meeting_phase_complete(updated):
            logger.info("All participants at meeting point for trip %s", trip.id)
            participants = [p.model_copy(update={"route_index": 0}) for p in updated.participants]
            updated = updated.model_copy(
                update={"phase": "destination", "participants": participants}
            )
    elif updated.is_complete:
        logger.info(
            "All participants reached destination for trip %s after %d ticks",
            trip.id,
            updated.simulation_step,
        )
        updated = updated.model_copy(update={"is_simulating": False})

    return updated
