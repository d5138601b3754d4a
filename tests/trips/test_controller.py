import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from core.exceptions import NotFoundError, StateError, ValidationError
from rendezvous.optimizer import InvalidInputError, MeetingPointOptimizer
from tests.factories import StraightLineProvider
from trip import Location, Trip
from trips.controller import TripController

MAX_TICKS = 100_000


class GatedProvider(StraightLineProvider):
    """Blocks every fetch until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def fetch_path(self, origin: Location, destination: Location) -> list[Location]:
        await self.gate.wait()
        return await super().fetch_path(origin, destination)


@pytest.fixture
def controller() -> TripController:
    return TripController(MeetingPointOptimizer(StraightLineProvider()), speed_multiplier=8)


@pytest.fixture
def published(controller: TripController) -> list[Trip | None]:
    snapshots: list[Trip | None] = []
    controller.register_callback(snapshots.append)
    return snapshots


def tick_until(controller: TripController, predicate) -> int:
    ticks = 0
    while not predicate():
        controller.tick()
        ticks += 1
        assert ticks < MAX_TICKS
    return ticks


@pytest.mark.unit
class TestOptimization:
    async def test_start_optimization_sets_active_trip(self, controller, published, sample_trip):
        trip = await controller.start_optimization(sample_trip)

        assert trip is controller.trip
        assert trip.id == sample_trip.id
        assert trip.meeting_points and trip.routes
        assert trip.phase == "meeting"
        assert not trip.is_simulating
        assert all(p.current_location == p.home_location for p in trip.participants)
        # Pending snapshot first, then the optimized one
        assert published[0].routes is None
        assert published[-1] is trip

    async def test_invalid_trip_raises_synchronously(self, controller, published, sample_trip):
        with pytest.raises(InvalidInputError):
            await controller.start_optimization(
                sample_trip.model_copy(update={"participants": []})
            )

        assert controller.trip is None
        assert published == []

    async def test_newer_request_supersedes_older(self, sample_trip, trip_factory):
        provider = GatedProvider()
        controller = TripController(MeetingPointOptimizer(provider))
        second_trip = trip_factory.create(homes=[(13.05, 80.25)], destination=(13.10, 80.30))

        first = asyncio.create_task(controller.start_optimization(sample_trip))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert controller.is_optimizing

        provider.gate.set()
        second = await controller.start_optimization(second_trip)

        assert await first is None
        assert second is not None
        assert controller.trip.id == second_trip.id

    async def test_optimizer_failure_discards_trip(self, sample_trip, published):
        optimizer = Mock()
        optimizer.optimize = AsyncMock(side_effect=RuntimeError("boom"))
        controller = TripController(optimizer)
        controller.register_callback(published.append)

        with pytest.raises(RuntimeError):
            await controller.start_optimization(sample_trip)

        assert controller.trip is None
        assert published[-1] is None

    async def test_async_callbacks_are_scheduled(self, controller, sample_trip):
        received: list[Trip | None] = []

        async def on_update(trip: Trip | None) -> None:
            received.append(trip)

        controller.register_callback(on_update)
        await controller.start_optimization(sample_trip)
        await asyncio.sleep(0)

        assert received[-1] is controller.trip

    async def test_failing_callback_does_not_block_others(self, controller, sample_trip):
        received: list[Trip | None] = []
        controller.register_callback(Mock(side_effect=RuntimeError("broken")))
        controller.register_callback(received.append)

        await controller.start_optimization(sample_trip)

        assert received[-1] is controller.trip


@pytest.mark.unit
class TestSimulationCommands:
    async def test_commands_without_trip(self, controller):
        with pytest.raises(NotFoundError):
            controller.tick()
        with pytest.raises(NotFoundError):
            controller.reset()

    async def test_start_pause(self, controller, sample_trip):
        await controller.start_optimization(sample_trip)

        trip = controller.start_simulation()
        assert trip.is_simulating
        assert controller.is_ticking
        with pytest.raises(StateError, match="already running"):
            controller.start_simulation()

        trip = controller.pause()
        assert not trip.is_simulating
        assert not controller.is_ticking
        with pytest.raises(StateError, match="not running"):
            controller.pause()

    async def test_set_speed_validates_multiplier(self, controller):
        controller.set_speed(32)
        assert controller.speed_multiplier == 32

        with pytest.raises(ValidationError):
            controller.set_speed(3)
        assert controller.speed_multiplier == 32

    async def test_meeting_completion_awaits_departure(self, controller, sample_trip):
        await controller.start_optimization(sample_trip)

        tick_until(controller, lambda: controller.awaiting_departure)

        trip = controller.trip
        assert trip.phase == "destination"
        assert not trip.is_simulating
        assert all(p.has_reached_meeting_point for p in trip.participants)
        with pytest.raises(StateError):
            controller.tick()
        with pytest.raises(StateError):
            controller.start_simulation()

        trip = controller.confirm_departure()
        assert trip.is_simulating
        assert not controller.awaiting_departure
        controller.pause()

        tick_until(controller, lambda: controller.trip.is_complete)
        assert not controller.trip.is_simulating
        with pytest.raises(StateError, match="completed"):
            controller.start_simulation()

    async def test_confirm_departure_only_while_awaiting(self, controller, sample_trip):
        await controller.start_optimization(sample_trip)

        with pytest.raises(StateError):
            controller.confirm_departure()

    async def test_auto_depart_continues_to_destination(self, sample_trip):
        controller = TripController(
            MeetingPointOptimizer(StraightLineProvider()), speed_multiplier=8, auto_depart=True
        )
        await controller.start_optimization(sample_trip)

        tick_until(controller, lambda: controller.trip.phase == "destination")

        assert not controller.awaiting_departure
        controller.tick()

    async def test_scheduled_ticks_reach_meeting_point(self, sample_trip):
        controller = TripController(
            MeetingPointOptimizer(StraightLineProvider()), speed_multiplier=32
        )
        await controller.start_optimization(sample_trip)

        controller.start_simulation()
        for _ in range(500):
            if controller.awaiting_departure:
                break
            await asyncio.sleep(0.01)

        assert controller.awaiting_departure
        assert not controller.is_ticking
        assert controller.trip.simulation_step > 0

    async def test_reset_restores_initial_state(self, controller, sample_trip):
        optimized = await controller.start_optimization(sample_trip)
        for _ in range(5):
            controller.tick()

        trip = controller.reset()

        assert trip.phase == "meeting"
        assert trip.simulation_step == 0
        assert not trip.is_simulating
        assert trip.routes == optimized.routes
        for participant in trip.participants:
            assert participant.current_location == participant.home_location
            assert not participant.has_reached_meeting_point
            assert not participant.has_reached_destination
            assert participant.route_index == 0

    async def test_reset_stops_running_schedule(self, controller, sample_trip):
        await controller.start_optimization(sample_trip)
        controller.start_simulation()

        controller.reset()

        assert not controller.is_ticking

    async def test_end_discards_trip(self, controller, published, sample_trip):
        await controller.start_optimization(sample_trip)
        controller.start_simulation()

        controller.end()

        assert controller.trip is None
        assert not controller.is_ticking
        assert published[-1] is None
        with pytest.raises(NotFoundError):
            controller.start_simulation()

    async def test_tick_from_superseded_epoch_is_dropped(self, controller, sample_trip):
        await controller.start_optimization(sample_trip)
        before = controller.trip
        controller.reset()

        # A tick computed against the pre-reset snapshot must not be applied
        result = controller._apply_tick(controller._epoch - 1, before, before)

        assert result is controller.trip
        assert controller.trip is not before
