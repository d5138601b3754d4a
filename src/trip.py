"""Trip, participant and route models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Phase = Literal["meeting", "destination"]


class Location(BaseModel):
    """A point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)

    def as_tuple(self) -> tuple[float, float]:
        return self.lat, self.lng


class ParticipantRole(str, Enum):
    """Position of a participant within the travelling group."""

    LEADER = "Leader"
    MEMBER = "Member"
    TRAILER = "Trailer"


class Participant(BaseModel):
    id: str
    name: str = ""
    home_location: Location
    current_location: Location | None = None
    role: ParticipantRole = ParticipantRole.MEMBER
    has_reached_meeting_point: bool = False
    has_reached_destination: bool = False
    # Last sample passed on the active route, reset when the phase changes
    route_index: int = Field(default=0, ge=0)

    @property
    def position(self) -> Location:
        """Current position, falling back to the home location before the first tick."""
        return self.current_location or self.home_location


class Destination(BaseModel):
    name: str = "Destination"
    location: Location


class MeetingPoint(BaseModel):
    location: Location
    participant_ids: list[str]
    name: str | None = "Optimal Meeting Point"

    def serves(self, participant_id: str) -> bool:
        return participant_id in self.participant_ids


class Route(BaseModel):
    """Immutable leg geometry produced by the optimizer."""

    model_config = ConfigDict(frozen=True)

    name: str
    from_location: Location
    to_location: Location
    coordinates: list[Location]
    distance_km: float
    duration_minutes: float
    phase: Phase
    # Meeting-phase routes belong to one participant, the destination route is shared
    participant_id: str | None = None
    color_index: int = 0


class Trip(BaseModel):
    """Snapshot of a trip. Transformations return a new Trip via model_copy."""

    id: str = Field(default_factory=lambda: uuid4().hex[:9])
    name: str = "New Trip"
    destination: Destination
    participants: list[Participant]
    meeting_points: list[MeetingPoint] | None = None
    routes: list[Route] | None = None
    phase: Phase = "meeting"
    is_simulating: bool = False
    simulation_step: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def meeting_point_for(self, participant_id: str) -> MeetingPoint | None:
        for meeting_point in self.meeting_points or []:
            if meeting_point.serves(participant_id):
                return meeting_point
        return None

    def route_for(self, participant_id: str) -> Route | None:
        """Resolve the participant's active route for the current phase."""
        for route in self.routes or []:
            if route.phase != self.phase:
                continue
            if self.phase == "destination" or route.participant_id == participant_id:
                return route
        return None

    @property
    def is_complete(self) -> bool:
        return all(p.has_reached_destination for p in self.participants)
