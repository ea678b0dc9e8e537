"""Data models for the event sync layer."""
import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Event:
    """Normalized event record as rendered by screens."""
    id: str
    title: str
    description: str
    date: str
    time: str
    location: str
    category: str = ''
    cover_image: Optional[str] = None
    image: Optional[str] = None
    featured: bool = False
    status: str = 'upcoming'
    type: Optional[str] = None
    max_capacity: Optional[int] = None
    organizer: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    materials: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Registration:
    """Row of the event_attendees table."""
    id: str
    event_id: str
    user_id: str
    status: str
    created_at: Optional[str] = None


@dataclass
class Bookmark:
    """Row of the event_bookmarks table."""
    id: str
    event_id: str
    user_id: str
    created_at: Optional[str] = None


@dataclass
class Feedback:
    """Row of the event_feedback table."""
    id: str
    event_id: str
    user_id: str
    rating: int
    comment: str
    username: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class AttendeeView:
    """Registration joined with the user's display name and email."""
    attendee_id: str
    event_id: str
    user_id: str
    name: str
    email: str
    status: str
    registered_at: Optional[str] = None


@dataclass
class UserEventTracking:
    """Derived view of a user's relation to one event."""
    event_id: str
    user_id: str
    status: str
    registration_date: Optional[str]
    feedback_submitted: bool


@dataclass
class EventStats:
    """Feedback summary for one event."""
    total_registrations: int
    average_rating: float
    total_reviews: int
    rating_distribution: Dict[int, int]


@dataclass
class ChangeNotification:
    """Insert/update/delete notification pushed by the change feed."""
    type: str
    new: Optional[dict] = None
    old: Optional[dict] = None

    @property
    def record_id(self) -> Optional[str]:
        """Id of the affected record, from the new image or the old one."""
        for image in (self.new, self.old):
            if image and image.get('id'):
                return image['id']
        return None


class MutationState(str, enum.Enum):
    pending = 'pending'
    confirmed = 'confirmed'
    rolled_back = 'rolled_back'


@dataclass
class MutationResult:
    """Outcome of an optimistic mutation; truthy only once confirmed."""
    action: str
    event_id: str
    state: MutationState = MutationState.pending

    def __bool__(self) -> bool:
        return self.state == MutationState.confirmed
