"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from trips.controller import TripController


def get_controller(request: Request) -> TripController:
    """Retrieve TripController from app state."""
    return request.app.state.controller


ControllerDep = Annotated[TripController, Depends(get_controller)]
