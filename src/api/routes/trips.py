from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException

from api.auth import verify_api_key
from api.dependencies import ControllerDep
from api.models.trip import (
    ControlResponse,
    CreateTripRequest,
    SpeedChangeRequest,
    SpeedChangeResponse,
    TripStateResponse,
)
from core.exceptions import NotFoundError, StateError, ValidationError
from trips.controller import TripController

router = APIRouter(dependencies=[Depends(verify_api_key)])


@contextmanager
def controller_errors() -> Iterator[None]:
    """Translate controller exceptions into HTTP errors."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    except (StateError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=e.message) from e


def _state(controller: TripController) -> TripStateResponse:
    trip = controller.trip
    if trip is None:
        raise HTTPException(status_code=404, detail="No active trip")
    return TripStateResponse(
        trip=trip,
        awaiting_departure=controller.awaiting_departure,
        speed_multiplier=controller.speed_multiplier,
        is_optimizing=controller.is_optimizing,
    )


@router.post("", response_model=TripStateResponse)
async def create_trip(body: CreateTripRequest, controller: ControllerDep) -> TripStateResponse:
    """Create a trip and compute its meeting point and routes."""
    with controller_errors():
        trip = await controller.start_optimization(body.to_trip())
    if trip is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer trip request")
    return _state(controller)


@router.get("", response_model=TripStateResponse)
async def get_trip(controller: ControllerDep) -> TripStateResponse:
    return _state(controller)


@router.delete("", response_model=ControlResponse)
async def end_trip(controller: ControllerDep) -> ControlResponse:
    """End the active trip and stop any running simulation."""
    if controller.trip is None:
        raise HTTPException(status_code=404, detail="No active trip")
    controller.end()
    return ControlResponse(status="ended")


@router.post("/simulation/start", response_model=TripStateResponse)
async def start_simulation(controller: ControllerDep) -> TripStateResponse:
    with controller_errors():
        controller.start_simulation()
    return _state(controller)


@router.post("/simulation/pause", response_model=TripStateResponse)
async def pause_simulation(controller: ControllerDep) -> TripStateResponse:
    with controller_errors():
        controller.pause()
    return _state(controller)


@router.post("/simulation/tick", response_model=TripStateResponse)
async def tick_simulation(controller: ControllerDep) -> TripStateResponse:
    """Advance the trip by a single tick (manual stepping)."""
    with controller_errors():
        controller.tick()
    return _state(controller)


@router.post("/simulation/confirm-departure", response_model=TripStateResponse)
async def confirm_departure(controller: ControllerDep) -> TripStateResponse:
    """Leave the meeting point for the destination."""
    with controller_errors():
        controller.confirm_departure()
    return _state(controller)


@router.post("/simulation/reset", response_model=TripStateResponse)
async def reset_simulation(controller: ControllerDep) -> TripStateResponse:
    with controller_errors():
        controller.reset()
    return _state(controller)


@router.put("/simulation/speed", response_model=SpeedChangeResponse)
async def change_speed(body: SpeedChangeRequest, controller: ControllerDep) -> SpeedChangeResponse:
    """Change the simulation speed multiplier (1, 2, 4, 8, 16 or 32)."""
    with controller_errors():
        controller.set_speed(body.multiplier)
    return SpeedChangeResponse(speed=controller.speed_multiplier)
