"""Event lifecycle state machine and per-user derived views."""
import logging
from datetime import date, datetime
from typing import Iterable, Optional

from processor.datetime_normalizer import (
    STATUS_COMPLETED,
    STATUS_UPCOMING,
    DateTimeNormalizer,
)
from processor.models import Event, EventStats, Feedback, Registration, UserEventTracking

logger = logging.getLogger(__name__)

STATUS_ONGOING = 'ongoing'
STATUS_CANCELLED = 'cancelled'
EVENT_STATUSES = (STATUS_UPCOMING, STATUS_ONGOING, STATUS_COMPLETED, STATUS_CANCELLED)

# Set by administrators; automatic recomputation never leaves these.
STICKY_STATUSES = frozenset({STATUS_ONGOING, STATUS_COMPLETED, STATUS_CANCELLED})

REGISTRATION_CONFIRMED = 'confirmed'
REGISTRATION_CANCELLED = 'cancelled'

TRACKING_REGISTERED = 'registered'
TRACKING_ATTENDED = 'attended'

MIN_RATING = 1
MAX_RATING = 5

_normalizer = DateTimeNormalizer()


def resolve_status(current: Optional[str], computed: Optional[str]) -> Optional[str]:
    """
    Apply an automatically computed status to a stored one.

    Only upcoming -> completed is an automatic transition. Missing or
    unknown stored statuses adopt the computed value.

    Args:
        current: Status currently persisted on the event
        computed: Status derived from date and time

    Returns:
        The status the event should carry after recomputation
    """
    if current in STICKY_STATUSES:
        return current
    if computed is None:
        return current
    if current == STATUS_UPCOMING and computed != STATUS_COMPLETED:
        return current
    return computed


def display_status(event: Event, now: Optional[datetime] = None) -> str:
    """Status to render for an event at instant now."""
    computed = _normalizer.compute_status(event.date, event.time, now)
    return resolve_status(event.status, computed) or STATUS_UPCOMING


def is_valid_rating(rating) -> bool:
    # bool is an int subclass; True must not count as a rating of 1
    if isinstance(rating, bool) or not isinstance(rating, int):
        return False
    return MIN_RATING <= rating <= MAX_RATING


def derive_tracking(
    registration: Registration,
    event: Event,
    feedback_submitted: bool,
    today: Optional[date] = None
) -> UserEventTracking:
    """
    Combine a registration with the event date into a tracking view.

    Args:
        registration: Active registration row for the user
        event: The registered event
        feedback_submitted: Whether the user already left feedback
        today: Reference day

    Returns:
        UserEventTracking with status 'attended' for past events,
        'registered' otherwise
    """
    attended = _normalizer.is_past_date(event.date, today)
    return UserEventTracking(
        event_id=event.id,
        user_id=registration.user_id,
        status=TRACKING_ATTENDED if attended else TRACKING_REGISTERED,
        registration_date=registration.created_at,
        feedback_submitted=feedback_submitted
    )


def can_submit_feedback(
    registration: Optional[Registration],
    event: Optional[Event],
    has_existing_feedback: bool,
    today: Optional[date] = None
) -> bool:
    """Gate for feedback creation: active registration, past event, no prior feedback."""
    if event is None:
        logger.warning("Feedback blocked: event not found")
        return False
    if registration is None or registration.status != REGISTRATION_CONFIRMED:
        logger.warning(f"Feedback blocked: no active registration for event {event.id}")
        return False
    if not _normalizer.is_past_date(event.date, today):
        logger.warning(f"Feedback blocked: event {event.id} has not happened yet")
        return False
    if has_existing_feedback:
        logger.warning(f"Feedback blocked: feedback already exists for event {event.id}")
        return False
    return True


def summarize_feedback(
    feedback_rows: Iterable[Feedback],
    total_registrations: int = 0
) -> EventStats:
    """
    Build rating statistics for one event.

    Args:
        feedback_rows: Feedback rows of the event
        total_registrations: Count of active registrations

    Returns:
        EventStats with average rounded to one decimal and the rating
        distribution expressed as whole percentages
    """
    rows = list(feedback_rows)
    counts = {rating: 0 for rating in range(MIN_RATING, MAX_RATING + 1)}
    for row in rows:
        if row.rating in counts:
            counts[row.rating] += 1

    total_reviews = sum(counts.values())
    if total_reviews == 0:
        return EventStats(
            total_registrations=total_registrations,
            average_rating=0.0,
            total_reviews=0,
            rating_distribution=counts
        )

    average = sum(rating * count for rating, count in counts.items()) / total_reviews
    distribution = {
        rating: round(count / total_reviews * 100)
        for rating, count in counts.items()
    }
    return EventStats(
        total_registrations=total_registrations,
        average_rating=round(average, 1),
        total_reviews=total_reviews,
        rating_distribution=distribution
    )
