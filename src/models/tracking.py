from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .mineflayer_bridge.entities import Vec3


class ProjectileObservation(BaseModel):
    """One position sample of an in-flight pearl, stamped with its arrival time."""
    entity_id: int
    timestamp: float
    position: Vec3
    velocity: Optional[Vec3] = None
    world: Optional[str] = None
    owner_id: Optional[int] = None
    # True for the first sample of a freshly spawned entity.
    spawned: bool = False


class Despawn(BaseModel):
    """The world removed a tracked pearl entity."""
    entity_id: int


class PickedUp(BaseModel):
    """
    This agent picked up a pearl. `entity_id` is known when the collect event
    names the entity, and None when only the inventory count went up.
    """
    entity_id: Optional[int] = None


class TrajectoryStatus(str, Enum):
    IN_FLIGHT = "in_flight"
    LANDED = "landed"
    LOST = "lost"


class LandedPearl(BaseModel):
    """Read-only view of a landed, unclaimed pearl handed to the retrieval coordinator."""
    entity_id: int
    position: Vec3
    world: Optional[str] = None
    landed_at: float
    owner_id: Optional[int] = None


class TrajectoryRecord(BaseModel):
    entity_id: int
    observations: List[ProjectileObservation] = Field(default_factory=list)
    predicted_landing: Optional[Vec3] = None
    status: TrajectoryStatus = TrajectoryStatus.IN_FLIGHT
    claimed: bool = False
    landed_at: Optional[float] = None
    flight_started: Optional[float] = None
    world: Optional[str] = None
    owner_id: Optional[int] = None

    @property
    def last_observation(self) -> ProjectileObservation:
        return self.observations[-1]

    @property
    def last_seen(self) -> float:
        return self.observations[-1].timestamp

    def as_landed(self) -> LandedPearl:
        return LandedPearl(
            entity_id=self.entity_id,
            position=self.predicted_landing,
            world=self.world,
            landed_at=self.landed_at,
            owner_id=self.owner_id,
        )


class AgentMode(str, Enum):
    IDLE = "idle"
    TRAVELLING = "travelling"
    COLLECTING = "collecting"


class AgentState(BaseModel):
    """Behavioral state of one agent. Only the retrieval coordinator mutates it."""
    identity: str
    mode: AgentMode = AgentMode.IDLE
    target: Optional[LandedPearl] = None
    position: Optional[Vec3] = None


class NavigationOutcome(str, Enum):
    ARRIVED = "arrived"
    UNREACHABLE = "unreachable"
    ABORTED = "aborted"


class RetrievalOutcome(str, Enum):
    COLLECTED = "collected"
    UNREACHABLE = "unreachable"
    ABORTED = "aborted"
    VANISHED = "vanished"
    TIMED_OUT = "timed_out"
