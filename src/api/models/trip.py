from uuid import uuid4

from pydantic import BaseModel, Field

from trip import Destination, Location, Participant, ParticipantRole, Trip


class ParticipantRequest(BaseModel):
    id: str | None = None
    name: str = ""
    home_location: Location
    role: ParticipantRole = ParticipantRole.MEMBER


class CreateTripRequest(BaseModel):
    name: str = "New Trip"
    destination: Destination
    # Emptiness is rejected by the optimizer with a 400, not here
    participants: list[ParticipantRequest] = Field(default_factory=list)

    def to_trip(self) -> Trip:
        participants = [
            Participant(
                id=p.id or uuid4().hex[:9],
                name=p.name,
                home_location=p.home_location,
                role=p.role,
            )
            for p in self.participants
        ]
        return Trip(name=self.name, destination=self.destination, participants=participants)


class TripStateResponse(BaseModel):
    trip: Trip
    awaiting_departure: bool
    speed_multiplier: int
    is_optimizing: bool = False


class SpeedChangeRequest(BaseModel):
    multiplier: int


class SpeedChangeResponse(BaseModel):
    speed: int


class ControlResponse(BaseModel):
    status: str
    message: str | None = None
