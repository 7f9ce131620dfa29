from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from ..exceptions import InvalidTripStateError
from .locations import Coordinate, Location
from .route_segments import RouteStep


class TripStatus(str, Enum):
    """Trip lifecycle states."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: Dict[TripStatus, Set[TripStatus]] = {
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class StepProgress:
    step_id: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class LocationFix:
    coordinate: Coordinate
    timestamp: datetime
    accuracy: Optional[float] = None


@dataclass
class ActiveTrip:
    """A user's live journey along a snapshot of route steps"""
    id: str
    user_id: str
    route_id: Optional[str]
    route_name: str
    steps: List[RouteStep]
    step_progress: List[StepProgress]
    started_at: datetime
    estimated_arrival: Optional[datetime] = None
    status: TripStatus = TripStatus.IN_PROGRESS
    current_step_index: int = 0
    location_history: List[LocationFix] = field(default_factory=list)
    notifications_sent: Set[Tuple[str, str]] = field(default_factory=set)
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    metadata: Dict[str, object] = field(default_factory=dict)
    version: int = 0

    @property
    def current_step(self) -> RouteStep:
        return self.steps[self.current_step_index]

    @property
    def destination(self) -> Location:
        return self.steps[-1].to_location

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1

    def transition_to(self, new_status: TripStatus, when: datetime):
        """Transition to a new status with validation."""
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidTripStateError(
                f"Invalid transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        if new_status == TripStatus.COMPLETED:
            self.completed_at = when
        elif new_status == TripStatus.CANCELLED:
            self.cancelled_at = when


@dataclass
class ProgressUpdate:
    """Outcome of one location update"""
    trip_id: str
    status: TripStatus
    current_step_index: int
    current_step_completed: bool
    next_step_started: bool
    distance_to_next_waypoint_m: float
    estimated_arrival: Optional[datetime]
    alerts: List[str] = field(default_factory=list)


@dataclass
class Notification:
    user_id: str
    title: str
    body: str
    kind: str
    trip_id: Optional[str] = None
    data: Dict[str, object] = field(default_factory=dict)
