from .trip import (
    ControlResponse,
    CreateTripRequest,
    ParticipantRequest,
    SpeedChangeRequest,
    SpeedChangeResponse,
    TripStateResponse,
)

__all__ = [
    "ControlResponse",
    "CreateTripRequest",
    "ParticipantRequest",
    "SpeedChangeRequest",
    "SpeedChangeResponse",
    "TripStateResponse",
]
