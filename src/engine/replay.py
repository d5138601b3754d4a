"""Headless trip replay in simulated time.

Drives ``advance`` from a SimPy process on the same cadence the live tick
loop uses, without waiting on the wall clock. Departure from the meeting
point is confirmed automatically.
"""

from collections.abc import Callable, Generator
from dataclasses import dataclass

import simpy

from engine.simulation import advance, is_terminal, tick_interval_seconds
from trip import Trip

DEFAULT_MAX_TICKS = 100_000


@dataclass
class ReplayResult:
    trip: Trip
    ticks: int
    simulated_seconds: float

    @property
    def completed(self) -> bool:
        return is_terminal(self.trip)


def simulate_trip(
    env: simpy.Environment,
    trip: Trip,
    speed_multiplier: float,
    on_update: Callable[[Trip], None],
    max_ticks: int = DEFAULT_MAX_TICKS,
) -> Generator[simpy.Event, None, None]:
    """SimPy process advancing trip once per tick interval until it is terminal.

    Args:
        env: SimPy environment for timeouts
        trip: Optimized trip snapshot to start from
        speed_multiplier: Step and cadence multiplier
        on_update: Receives every new snapshot
        max_ticks: Upper bound on ticks, guards against routes that never converge

    Yields:
        SimPy timeout events for each tick interval
    """
    interval = tick_interval_seconds(speed_multiplier)
    current = trip.model_copy(update={"is_simulating": True})

    for _ in range(max_ticks):
        yield env.timeout(interval)
        current = advance(current, speed_multiplier)
        on_update(current)
        if is_terminal(current):
            return


def replay_trip(
    trip: Trip, speed_multiplier: float = 1, max_ticks: int = DEFAULT_MAX_TICKS
) -> ReplayResult:
    """Run trip to completion in a fresh SimPy environment."""
    env = simpy.Environment()
    snapshots: list[Trip] = [trip]

    env.process(simulate_trip(env, trip, speed_multiplier, snapshots.append, max_ticks))
    env.run()

    final = snapshots[-1]
    return ReplayResult(
        trip=final,
        ticks=final.simulation_step - trip.simulation_step,
        simulated_seconds=float(env.now),
    )
