"""Single owner of the active trip.

Every state change goes through one of the controller's commands and
produces a new Trip snapshot, which is then pushed to the registered
callbacks (the presentation layer). Only one trip is active at a time.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from core.exceptions import NotFoundError, PermanentError, StateError, ValidationError
from engine.simulation import (
    SPEED_MULTIPLIERS,
    SimulationInconsistency,
    advance,
    is_terminal,
    tick_interval_seconds,
)
from engine.tick_scheduler import TickScheduler
from rendezvous.optimizer import MeetingPointOptimizer, OptimizationResult, validate_trip
from sim_logging import log_trip_context
from trip import Trip
from utils.async_helpers import run_coroutine_safe

logger = logging.getLogger(__name__)

TripCallback = Callable[[Trip | None], Any]


class OptimizationAborted(PermanentError):
    """A newer optimization request superseded this one."""

    pass


class TripController:
    def __init__(
        self,
        optimizer: MeetingPointOptimizer,
        speed_multiplier: int = 1,
        auto_depart: bool = False,
    ) -> None:
        self._optimizer = optimizer
        self._speed = self._validate_speed(speed_multiplier)
        self._auto_depart = auto_depart
        self._trip: Trip | None = None
        self._callbacks: list[TripCallback] = []
        self._optimization_task: asyncio.Task[OptimizationResult] | None = None
        self._scheduler: TickScheduler | None = None
        # Bumped whenever a new optimization starts or the trip ends
        self._generation = 0
        # Bumped whenever tick results computed before now must be dropped
        self._epoch = 0
        self.awaiting_departure = False
        self.inconsistencies = 0

    @property
    def trip(self) -> Trip | None:
        return self._trip

    @property
    def speed_multiplier(self) -> int:
        return self._speed

    @property
    def is_optimizing(self) -> bool:
        return self._optimization_task is not None and not self._optimization_task.done()

    @property
    def is_ticking(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    def register_callback(self, callback: TripCallback) -> None:
        self._callbacks.append(callback)

    def unregister_callback(self, callback: TripCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_optimization(self, trip: Trip) -> Trip | None:
        """Optimize trip and make it the active trip.

        Returns the optimized snapshot, or None when a newer request
        superseded this one before it finished.
        """
        validate_trip(trip)

        self._stop_schedule()
        if self._optimization_task is not None and not self._optimization_task.done():
            self._optimization_task.cancel()

        self._generation += 1
        self._epoch += 1
        generation = self._generation
        pending = trip.model_copy(
            update={
                "meeting_points": None,
                "routes": None,
                "phase": "meeting",
                "is_simulating": False,
                "simulation_step": 0,
            }
        )
        self._trip = pending
        self.awaiting_departure = False
        self._publish()

        with log_trip_context(pending.id):
            logger.info(
                "Optimizing trip %s for %d participants", pending.id, len(pending.participants)
            )
            task = asyncio.create_task(self._optimizer.optimize(pending))
            self._optimization_task = task
            try:
                result = await task
            except asyncio.CancelledError:
                if generation != self._generation:
                    logger.info("Optimization for trip %s superseded", pending.id)
                    return None
                raise
            except Exception:
                if generation != self._generation:
                    return None
                logger.exception("Optimization failed for trip %s, discarding trip", pending.id)
                self._trip = None
                self._publish()
                raise
            finally:
                if self._optimization_task is task:
                    self._optimization_task = None

            try:
                return self._apply_optimization(generation, pending, result)
            except OptimizationAborted as e:
                logger.info("Discarding stale optimization result: %s", e)
                return None

    def start_simulation(self, speed_multiplier: int | None = None) -> Trip:
        trip = self._require_optimized_trip()
        if trip.is_simulating:
            raise StateError("Simulation already running")
        if self.awaiting_departure:
            raise StateError("Awaiting departure confirmation")
        if is_terminal(trip):
            raise StateError("Trip already completed, reset it first")

        if speed_multiplier is not None:
            self.set_speed(speed_multiplier)

        self._trip = trip.model_copy(update={"is_simulating": True})
        self._start_schedule()
        self._publish()
        return self._trip

    def pause(self) -> Trip:
        trip = self._require_trip()
        if not trip.is_simulating:
            raise StateError("Simulation not running")

        self._stop_schedule()
        self._trip = trip.model_copy(update={"is_simulating": False})
        self._publish()
        return self._trip

    def set_speed(self, speed_multiplier: int) -> None:
        self._speed = self._validate_speed(speed_multiplier)
        if self._scheduler is not None:
            self._scheduler.set_interval(tick_interval_seconds(self._speed))

    def tick(self) -> Trip:
        """Advance the active trip by one tick."""
        trip = self._require_optimized_trip()
        if self.awaiting_departure:
            raise StateError("Awaiting departure confirmation")

        epoch = self._epoch
        with log_trip_context(trip.id, phase=trip.phase):
            updated = advance(trip, self._speed, on_inconsistency=self._report_inconsistency)
            return self._apply_tick(epoch, trip, updated)

    def confirm_departure(self) -> Trip:
        trip = self._require_optimized_trip()
        if not self.awaiting_departure:
            raise StateError("Not awaiting departure confirmation")

        self.awaiting_departure = False
        self._trip = trip.model_copy(update={"is_simulating": True})
        logger.info("Departure confirmed for trip %s", trip.id)
        self._start_schedule()
        self._publish()
        return self._trip

    def reset(self) -> Trip:
        trip = self._require_trip()
        self._stop_schedule()
        self._epoch += 1
        self.awaiting_departure = False

        participants = [
            p.model_copy(
                update={
                    "current_location": p.home_location,
                    "has_reached_meeting_point": False,
                    "has_reached_destination": False,
                    "route_index": 0,
                }
            )
            for p in trip.participants
        ]
        self._trip = trip.model_copy(
            update={
                "participants": participants,
                "phase": "meeting",
                "is_simulating": False,
                "simulation_step": 0,
            }
        )
        logger.info("Trip %s reset", trip.id)
        self._publish()
        return self._trip

    def end(self) -> None:
        self._stop_schedule()
        if self._optimization_task is not None and not self._optimization_task.done():
            self._optimization_task.cancel()
        self._optimization_task = None
        self._generation += 1
        self._epoch += 1
        self.awaiting_departure = False

        if self._trip is not None:
            logger.info("Trip %s ended", self._trip.id)
        self._trip = None
        self._publish()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_optimization(
        self, generation: int, pending: Trip, result: OptimizationResult
    ) -> Trip:
        current = self._trip
        if generation != self._generation or current is None or current.id != pending.id:
            raise OptimizationAborted(f"Result for trip {pending.id} is stale")

        participants = [
            p.model_copy(update={"current_location": p.home_location, "route_index": 0})
            for p in pending.participants
        ]
        self._trip = pending.model_copy(
            update={
                "participants": participants,
                "meeting_points": result.meeting_points,
                "routes": result.routes,
                "phase": result.initial_phase,
                "is_simulating": False,
                "simulation_step": 0,
            }
        )
        self._publish()
        return self._trip

    def _apply_tick(self, epoch: int, before: Trip, updated: Trip) -> Trip:
        if epoch != self._epoch or self._trip is not before:
            logger.debug("Dropping tick computed from a superseded trip state")
            return self._trip if self._trip is not None else updated

        if before.phase == "meeting" and updated.phase == "destination":
            if self._auto_depart:
                logger.info("Meeting phase complete, departing automatically")
            else:
                updated = updated.model_copy(update={"is_simulating": False})
                self.awaiting_departure = True
                self._stop_schedule()
                logger.info("Meeting phase complete, awaiting departure confirmation")

        if is_terminal(updated):
            self._stop_schedule()

        self._trip = updated
        self._publish()
        return updated

    def _on_scheduled_tick(self) -> bool:
        if self._trip is None or not self._trip.is_simulating:
            return False
        return self.tick().is_simulating

    def _start_schedule(self) -> None:
        self._stop_schedule()
        self._scheduler = TickScheduler(self._on_scheduled_tick, tick_interval_seconds(self._speed))
        self._scheduler.start()

    def _stop_schedule(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    def _report_inconsistency(self, error: SimulationInconsistency) -> None:
        self.inconsistencies += 1
        logger.warning(error.message, extra=error.details)

    def _publish(self) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(self._trip)
            except Exception:
                logger.exception("Trip update callback failed")
                continue
            if inspect.iscoroutine(result):
                run_coroutine_safe(result)

    def _require_trip(self) -> Trip:
        if self._trip is None:
            raise NotFoundError("No active trip")
        return self._trip

    def _require_optimized_trip(self) -> Trip:
        trip = self._require_trip()
        if not trip.routes or not trip.meeting_points:
            raise StateError("Trip has not been optimized yet")
        return trip

    @staticmethod
    def _validate_speed(speed_multiplier: int) -> int:
        if speed_multiplier not in SPEED_MULTIPLIERS:
            raise ValidationError(
                f"Speed multiplier must be one of {SPEED_MULTIPLIERS}",
                details={"speed_multiplier": speed_multiplier},
            )
        return speed_multiplier
