"""DynamoDB repository for events and their sub-resources."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings, load_settings
from processor.datetime_normalizer import STATUS_UPCOMING, DateTimeNormalizer
from processor.errors import (
    AuthenticationError,
    ConflictError,
    EventSyncError,
    NotFoundError,
    ValidationError,
)
from processor.lifecycle import (
    EVENT_STATUSES,
    REGISTRATION_CANCELLED,
    REGISTRATION_CONFIRMED,
    STATUS_CANCELLED,
    can_submit_feedback,
    derive_tracking,
    is_valid_rating,
    resolve_status,
    summarize_feedback,
)
from processor.models import (
    AttendeeView,
    Bookmark,
    Event,
    EventStats,
    Feedback,
    Registration,
    UserEventTracking,
)
from storage.event_store import EventStore

logger = logging.getLogger(__name__)

BACKEND_ERRORS = (ClientError, BotoCoreError)


def _to_int(value) -> Optional[int]:
    if value is None or value == '':
        return None
    return int(value)


def _to_capacity(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid max_capacity: {value!r}")
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid max_capacity: {value!r}")
    if capacity < 0:
        raise ValidationError(f"invalid max_capacity: {value!r}")
    return capacity


def _to_list(field: str, value) -> list:
    if not value:
        return []
    if isinstance(value, (str, bytes, dict)) or not hasattr(value, '__iter__'):
        raise ValidationError(f"invalid {field}: expected a list, got {value!r}")
    return list(value)


class EventRepository:
    """Only component that talks to the backend for events."""

    REQUIRED_FIELDS = ('title', 'description', 'date', 'time', 'location')
    UPDATABLE_FIELDS = (
        'title', 'description', 'date', 'time', 'location', 'category',
        'cover_image', 'featured', 'status', 'type', 'max_capacity',
        'organizer', 'tags', 'requirements', 'materials',
    )
    BATCH_GET_SIZE = 100  # DynamoDB BatchGetItem key limit
    IN_FILTER_SIZE = 100  # DynamoDB IN operand limit

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session=None,
        store: Optional[EventStore] = None,
        dynamodb=None,
        normalizer: Optional[DateTimeNormalizer] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize table references.

        Args:
            settings: Table names and cache settings
            session: Object exposing current_user_id() for user-scoped calls
            store: Read cache for the event collection
            dynamodb: boto3 DynamoDB resource (created from settings otherwise)
            normalizer: Date/time normalizer
            clock: Source of the current local time
        """
        self.settings = settings or load_settings()
        self.session = session
        self.store = store or EventStore(ttl_seconds=self.settings.cache_ttl_seconds)
        self.normalizer = normalizer or DateTimeNormalizer()
        self._clock = clock

        self.dynamodb = dynamodb or boto3.resource(
            'dynamodb', region_name=self.settings.aws_region
        )
        self.events_table = self.dynamodb.Table(self.settings.events_table)
        self.attendees_table = self.dynamodb.Table(self.settings.attendees_table)
        self.bookmarks_table = self.dynamodb.Table(self.settings.bookmarks_table)
        self.feedback_table = self.dynamodb.Table(self.settings.feedback_table)
        self.users_table = self.dynamodb.Table(self.settings.users_table)
        logger.info(f"Initialized EventRepository for table: {self.settings.events_table}")

    # ------------------------------------------------------------------
    # Event queries

    def list_all(self) -> List[Event]:
        """
        Return every event ordered by date, served from cache when fresh.

        Returns:
            List of Event objects (empty on backend failure)
        """
        cached = self.store.get()
        if cached is not None:
            return cached

        logger.info("Scanning events table")
        try:
            items = self._scan_all(self.events_table)
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching events: {e}")
            return []

        events = self._sorted_events(items)
        self.store.put(events)
        logger.info(f"Retrieved {len(events)} events")
        return events

    def list_by_filter(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        location: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Event]:
        """
        Query events by equality filters and an optional text search.

        Always bypasses the cache.

        Args:
            status: Exact lifecycle status
            category: Exact category
            location: Exact location
            search: Case-insensitive substring of title or description

        Returns:
            Matching events ordered by date
        """
        filter_expression = None
        for name, value in (('status', status), ('category', category), ('location', location)):
            if value:
                condition = Attr(name).eq(value)
                filter_expression = condition if filter_expression is None else filter_expression & condition

        try:
            items = self._scan_all(self.events_table, filter_expression)
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching filtered events: {e}")
            return []

        events = self._sorted_events(items)
        if search and search.strip():
            events = self._match_text(events, search)
        return events

    def search(self, text: Optional[str]) -> List[Event]:
        """Case-insensitive title/description search; blank text lists everything."""
        if not text or not text.strip():
            return self.list_all()
        return self.list_by_filter(search=text)

    def get_by_id(self, event_id: str) -> Optional[Event]:
        """Return the event or None if missing or on backend failure."""
        try:
            return self._get_event(event_id)
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching event {event_id}: {e}")
            return None

    def get_featured(self) -> List[Event]:
        return [event for event in self.list_all() if event.featured]

    def get_upcoming(self, limit: int = 5) -> List[Event]:
        """Events that have not started yet, soonest first."""
        now = self._clock()
        upcoming = [
            event for event in self.list_all()
            if event.status != STATUS_CANCELLED
            and self.normalizer.compute_status(event.date, event.time, now) == STATUS_UPCOMING
        ]
        return upcoming[:limit]

    # ------------------------------------------------------------------
    # Event mutations

    def create(self, data: Dict) -> Optional[Event]:
        """
        Validate and persist a new event.

        Args:
            data: Field values; title, description, date, time and
                location are required

        Returns:
            The created Event, or None if validation or the write fails
        """
        try:
            item = self._build_event_item(data)
        except ValidationError as e:
            logger.warning(f"Event creation rejected: {e.message}")
            return None

        try:
            self.events_table.put_item(Item=item)
        except BACKEND_ERRORS as e:
            logger.error(f"Error creating event: {e}")
            return None

        self.store.invalidate()
        logger.info(f"Created event {item['id']}")
        return self.to_event(item)

    def _build_event_item(self, data: Dict) -> dict:
        for field in self.REQUIRED_FIELDS:
            value = data.get(field)
            if value is None or not str(value).strip():
                raise ValidationError(f"missing required field: {field}")

        today = self._clock().date()
        event_date = self.normalizer.validate_and_format_date(data['date'], today)
        if not event_date:
            raise ValidationError(f"invalid date: {data['date']!r}")
        event_time = self.normalizer.normalize_time_format(data['time'])
        if not event_time:
            raise ValidationError(f"invalid time: {data['time']!r}")

        computed = self.normalizer.compute_status(event_date, event_time, self._clock())
        requested = data.get('status')
        status = resolve_status(requested if requested in EVENT_STATUSES else None, computed)

        now_iso = self._now_iso()
        item = {
            'id': str(uuid.uuid4()),
            'title': str(data['title']).strip(),
            'description': str(data['description']).strip(),
            'date': event_date,
            'time': event_time,
            'location': str(data['location']).strip(),
            'category': data.get('category') or '',
            'featured': bool(data.get('featured', False)),
            'status': status or STATUS_UPCOMING,
            'tags': _to_list('tags', data.get('tags')),
            'requirements': _to_list('requirements', data.get('requirements')),
            'materials': _to_list('materials', data.get('materials')),
            'created_at': now_iso,
            'updated_at': now_iso,
        }

        # Add optional fields if present
        for field in ('cover_image', 'type', 'organizer'):
            if data.get(field):
                item[field] = data[field]
        if data.get('max_capacity') is not None:
            item['max_capacity'] = _to_capacity(data['max_capacity'])

        return item

    def update(self, event_id: str, patch: Dict) -> bool:
        """
        Apply a sparse patch to an event.

        Fields that are absent, None or otherwise falsy are left untouched;
        booleans are always applied so featured can be switched off.

        Args:
            event_id: Id of the event to patch
            patch: Field values to change

        Returns:
            True if the event was updated
        """
        try:
            changes = self._build_changes(patch)
        except ValidationError as e:
            logger.warning(f"Update of event {event_id} rejected: {e.message}")
            return False

        changes['updated_at'] = self._now_iso()
        names = {'#pk': 'id'}
        values = {}
        assignments = []
        for index, (field, value) in enumerate(changes.items()):
            names[f"#f{index}"] = field
            values[f":v{index}"] = value
            assignments.append(f"#f{index} = :v{index}")

        try:
            self.events_table.update_item(
                Key={'id': event_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(#pk)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                logger.warning(f"Update of event {event_id} rejected: event not found")
            else:
                logger.error(f"Error updating event {event_id}: {e}")
            return False
        except BotoCoreError as e:
            logger.error(f"Error updating event {event_id}: {e}")
            return False

        self.store.invalidate()
        logger.info(f"Updated event {event_id}: {sorted(changes)}")
        return True

    def _build_changes(self, patch: Dict) -> dict:
        changes = {}
        for field in self.UPDATABLE_FIELDS:
            if field not in patch:
                continue
            value = patch[field]
            if isinstance(value, bool):
                changes[field] = value
            elif value:
                changes[field] = value

        if 'date' in changes:
            event_date = self.normalizer.validate_and_format_date(
                changes['date'], self._clock().date()
            )
            if not event_date:
                raise ValidationError(f"invalid date: {changes['date']!r}")
            changes['date'] = event_date
        if 'time' in changes:
            event_time = self.normalizer.normalize_time_format(changes['time'])
            if not event_time:
                raise ValidationError(f"invalid time: {changes['time']!r}")
            changes['time'] = event_time
        if 'status' in changes and changes['status'] not in EVENT_STATUSES:
            raise ValidationError(f"unknown status: {changes['status']!r}")
        if 'max_capacity' in changes:
            changes['max_capacity'] = _to_capacity(changes['max_capacity'])
        for field in ('tags', 'requirements', 'materials'):
            if field in changes:
                changes[field] = _to_list(field, changes[field])
        return changes

    def delete(self, event_id: str) -> bool:
        """
        Delete an event and its feedback, registrations and bookmarks.

        Each cascade step is best-effort; a failing step is logged and the
        remaining steps still run. The cache is invalidated in every case.

        Args:
            event_id: Id of the event to delete

        Returns:
            True if the event row itself was deleted
        """
        cascade = (
            ('feedback', self.feedback_table),
            ('registrations', self.attendees_table),
            ('bookmarks', self.bookmarks_table),
        )
        for label, table in cascade:
            try:
                removed = self._delete_rows_for_event(table, event_id)
                logger.info(f"Deleted {removed} {label} of event {event_id}")
            except BACKEND_ERRORS as e:
                logger.error(f"Error deleting {label} of event {event_id}: {e}")

        deleted = False
        try:
            self.events_table.delete_item(Key={'id': event_id})
            deleted = True
            logger.info(f"Deleted event {event_id}")
        except BACKEND_ERRORS as e:
            logger.error(f"Error deleting event {event_id}: {e}")

        self.store.invalidate()
        return deleted

    def _delete_rows_for_event(self, table, event_id: str) -> int:
        items = self._scan_all(table, Attr('event_id').eq(event_id))
        if not items:
            return 0
        with table.batch_writer() as writer:
            for item in items:
                writer.delete_item(Key={'id': item['id']})
        return len(items)

    # ------------------------------------------------------------------
    # Status recomputation

    def recompute_status(self, event_id: str) -> bool:
        """
        Refresh the persisted status of one event from its date and time.

        Returns:
            True if the status changed and was written back
        """
        try:
            item = self.events_table.get_item(Key={'id': event_id}).get('Item')
            if not item:
                logger.warning(f"Cannot recompute status: event {event_id} not found")
                return False
            changed = self._write_recomputed_status(item)
        except BACKEND_ERRORS as e:
            logger.error(f"Error recomputing status of event {event_id}: {e}")
            return False

        if changed:
            self.store.invalidate()
        return changed

    def recompute_all_statuses(self) -> int:
        """
        Sweep every event and write back statuses that changed.

        Returns:
            Count of events whose status changed
        """
        try:
            items = self._scan_all(self.events_table)
        except BACKEND_ERRORS as e:
            logger.error(f"Error scanning events for status sweep: {e}")
            return 0

        changed_count = 0
        for item in items:
            try:
                if self._write_recomputed_status(item):
                    changed_count += 1
            except BACKEND_ERRORS as e:
                logger.error(f"Error updating status of event {item.get('id')}: {e}")
                continue

        if changed_count:
            self.store.invalidate()
        logger.info(f"Status sweep changed {changed_count} of {len(items)} events")
        return changed_count

    def _write_recomputed_status(self, item: dict) -> bool:
        current = item.get('status')
        computed = self.normalizer.compute_status(
            item.get('date', ''), item.get('time', ''), self._clock()
        )
        new_status = resolve_status(current, computed)
        if not new_status or new_status == current:
            return False

        self.events_table.update_item(
            Key={'id': item['id']},
            UpdateExpression='SET #status = :status, #updated_at = :updated_at',
            ExpressionAttributeNames={'#status': 'status', '#updated_at': 'updated_at'},
            ExpressionAttributeValues={':status': new_status, ':updated_at': self._now_iso()}
        )
        logger.info(f"Event {item['id']} status {current} -> {new_status}")
        return True

    # ------------------------------------------------------------------
    # Attendees

    def get_attendees(self, event_id: str) -> List[AttendeeView]:
        """
        Registrations of an event joined with user display data.

        Tries the event index plus a batch read of users; on any backend
        error falls back to two flat scans merged by user id.

        Returns:
            AttendeeView list (empty if both strategies fail)
        """
        try:
            return self._attendees_joined(event_id)
        except BACKEND_ERRORS as e:
            logger.warning(f"Joined attendee query failed, falling back to flat queries: {e}")

        try:
            return self._attendees_flat(event_id)
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching attendees of event {event_id}: {e}")
            return []

    def _attendees_joined(self, event_id: str) -> List[AttendeeView]:
        query_args = {
            'IndexName': self.settings.attendees_event_index,
            'KeyConditionExpression': Key('event_id').eq(event_id),
        }
        response = self.attendees_table.query(**query_args)
        rows = response.get('Items', [])
        while 'LastEvaluatedKey' in response:
            response = self.attendees_table.query(
                ExclusiveStartKey=response['LastEvaluatedKey'], **query_args
            )
            rows.extend(response.get('Items', []))

        user_ids = sorted({row['user_id'] for row in rows})
        users = {}
        for i in range(0, len(user_ids), self.BATCH_GET_SIZE):
            chunk = user_ids[i:i + self.BATCH_GET_SIZE]
            request = {self.users_table.name: {'Keys': [{'id': user_id} for user_id in chunk]}}
            while request:
                response = self.dynamodb.batch_get_item(RequestItems=request)
                for user in response.get('Responses', {}).get(self.users_table.name, []):
                    users[user['id']] = user
                request = response.get('UnprocessedKeys') or None

        return self._merge_attendees(rows, users)

    def _attendees_flat(self, event_id: str) -> List[AttendeeView]:
        rows = self._scan_all(self.attendees_table, Attr('event_id').eq(event_id))

        user_ids = sorted({row['user_id'] for row in rows})
        users = {}
        for i in range(0, len(user_ids), self.IN_FILTER_SIZE):
            chunk = user_ids[i:i + self.IN_FILTER_SIZE]
            for user in self._scan_all(self.users_table, Attr('id').is_in(chunk)):
                users[user['id']] = user

        return self._merge_attendees(rows, users)

    def _merge_attendees(self, rows: List[dict], users: Dict[str, dict]) -> List[AttendeeView]:
        attendees = []
        for row in sorted(rows, key=lambda r: r.get('created_at') or ''):
            user_id = row['user_id']
            user = users.get(user_id)
            if user:
                name = user.get('name') or user.get('email') or f"User {user_id[:8]}"
                email = user.get('email') or ''
            else:
                name = f"User {user_id[:8]}"
                email = f"user-{user_id[:8]}@unknown.local"
            attendees.append(AttendeeView(
                attendee_id=row['id'],
                event_id=row['event_id'],
                user_id=user_id,
                name=name,
                email=email,
                status=row.get('status', REGISTRATION_CONFIRMED),
                registered_at=row.get('created_at')
            ))
        return attendees

    # ------------------------------------------------------------------
    # Registrations and bookmarks

    def register(self, event_id: str) -> bool:
        """
        Register the signed-in user for an event.

        Rejected without a session, for unknown or past events, when the
        event is full, or when an active registration already exists.
        A cancelled registration is reactivated.

        Returns:
            True if the user now holds a new active registration
        """
        try:
            user_id = self._require_user()
            event = self._require_event(event_id)
            if self.normalizer.is_past_date(event.date, self._clock().date()):
                raise ValidationError("event date has passed")

            existing = self._find_registration(event_id, user_id)
            if existing and existing.status == REGISTRATION_CONFIRMED:
                raise ConflictError("already registered")

            if event.max_capacity:
                confirmed = self._scan_all(
                    self.attendees_table,
                    Attr('event_id').eq(event_id) & Attr('status').eq(REGISTRATION_CONFIRMED)
                )
                if len(confirmed) >= event.max_capacity:
                    raise ConflictError("event is full")

            if existing:
                self.attendees_table.update_item(
                    Key={'id': existing.id},
                    UpdateExpression='SET #status = :status, created_at = :created_at',
                    ExpressionAttributeNames={'#status': 'status'},
                    ExpressionAttributeValues={
                        ':status': REGISTRATION_CONFIRMED,
                        ':created_at': self._now_iso()
                    }
                )
            else:
                self.attendees_table.put_item(Item={
                    'id': str(uuid.uuid4()),
                    'event_id': event_id,
                    'user_id': user_id,
                    'status': REGISTRATION_CONFIRMED,
                    'created_at': self._now_iso(),
                })
        except EventSyncError as e:
            logger.warning(f"Registration for event {event_id} rejected: {e.message}")
            return False
        except BACKEND_ERRORS as e:
            logger.error(f"Error registering for event {event_id}: {e}")
            return False

        logger.info(f"User {user_id} registered for event {event_id}")
        return True

    def unregister(self, event_id: str) -> bool:
        """Cancel the signed-in user's active registration."""
        try:
            user_id = self._require_user()
            existing = self._find_registration(event_id, user_id)
            if not existing or existing.status != REGISTRATION_CONFIRMED:
                raise NotFoundError("not currently registered")

            self.attendees_table.update_item(
                Key={'id': existing.id},
                UpdateExpression='SET #status = :status',
                ExpressionAttributeNames={'#status': 'status'},
                ExpressionAttributeValues={':status': REGISTRATION_CANCELLED}
            )
        except EventSyncError as e:
            logger.warning(f"Unregistration from event {event_id} rejected: {e.message}")
            return False
        except BACKEND_ERRORS as e:
            logger.error(f"Error unregistering from event {event_id}: {e}")
            return False

        logger.info(f"User {user_id} unregistered from event {event_id}")
        return True

    def bookmark(self, event_id: str) -> bool:
        try:
            user_id = self._require_user()
            if self._find_bookmark(event_id, user_id):
                raise ConflictError("already bookmarked")
            self.bookmarks_table.put_item(Item={
                'id': str(uuid.uuid4()),
                'event_id': event_id,
                'user_id': user_id,
                'created_at': self._now_iso(),
            })
        except EventSyncError as e:
            logger.warning(f"Bookmark of event {event_id} rejected: {e.message}")
            return False
        except BACKEND_ERRORS as e:
            logger.error(f"Error bookmarking event {event_id}: {e}")
            return False
        return True

    def unbookmark(self, event_id: str) -> bool:
        try:
            user_id = self._require_user()
            existing = self._find_bookmark(event_id, user_id)
            if not existing:
                raise NotFoundError("not bookmarked")
            self.bookmarks_table.delete_item(Key={'id': existing.id})
        except EventSyncError as e:
            logger.warning(f"Unbookmark of event {event_id} rejected: {e.message}")
            return False
        except BACKEND_ERRORS as e:
            logger.error(f"Error removing bookmark of event {event_id}: {e}")
            return False
        return True

    def get_registered_ids(self) -> List[str]:
        """Ids of events the signed-in user is actively registered for."""
        try:
            user_id = self._require_user()
            rows = self._scan_all(
                self.attendees_table,
                Attr('user_id').eq(user_id) & Attr('status').eq(REGISTRATION_CONFIRMED)
            )
        except EventSyncError as e:
            logger.info(f"Cannot load registrations: {e.message}")
            return []
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching registrations: {e}")
            return []
        return sorted({row['event_id'] for row in rows})

    def get_bookmarked_ids(self) -> List[str]:
        """Ids of events the signed-in user has bookmarked."""
        try:
            user_id = self._require_user()
            rows = self._scan_all(self.bookmarks_table, Attr('user_id').eq(user_id))
        except EventSyncError as e:
            logger.info(f"Cannot load bookmarks: {e.message}")
            return []
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching bookmarks: {e}")
            return []
        return sorted({row['event_id'] for row in rows})

    def get_registered_events(self) -> List[Event]:
        registered = set(self.get_registered_ids())
        return [event for event in self.list_all() if event.id in registered]

    def get_bookmarked_events(self) -> List[Event]:
        bookmarked = set(self.get_bookmarked_ids())
        return [event for event in self.list_all() if event.id in bookmarked]

    def get_user_event_tracking(self, event_id: str) -> Optional[UserEventTracking]:
        """Derived registered/attended view for the signed-in user, or None."""
        try:
            user_id = self._require_user()
            registration = self._find_registration(event_id, user_id)
            if not registration or registration.status != REGISTRATION_CONFIRMED:
                return None
            event = self._require_event(event_id)
            has_feedback = self._find_feedback(event_id, user_id) is not None
        except EventSyncError as e:
            logger.info(f"No tracking for event {event_id}: {e.message}")
            return None
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching tracking for event {event_id}: {e}")
            return None
        return derive_tracking(registration, event, has_feedback, self._clock().date())

    # ------------------------------------------------------------------
    # Feedback

    def submit_feedback(self, event_id: str, rating: int, comment: str) -> bool:
        """
        Store the signed-in user's feedback for a past, attended event.

        Returns:
            True if the feedback row was written
        """
        try:
            if not is_valid_rating(rating):
                raise ValidationError(f"rating must be between 1 and 5, got {rating!r}")
            user_id = self._require_user()
            event = self._get_event(event_id)
            registration = self._find_registration(event_id, user_id)
            existing = self._find_feedback(event_id, user_id)
            if not can_submit_feedback(registration, event, existing is not None, self._clock().date()):
                raise ConflictError("feedback not allowed")

            text = (comment or '').strip()
            self.feedback_table.put_item(Item={
                'id': str(uuid.uuid4()),
                'event_id': event_id,
                'user_id': user_id,
                'username': self._display_name(user_id),
                'rating': rating,
                'comment': text,
                'feedback_text': text,
                'created_at': self._now_iso(),
            })
        except EventSyncError as e:
            logger.warning(f"Feedback for event {event_id} rejected: {e.message}")
            return False
        except BACKEND_ERRORS as e:
            logger.error(f"Error submitting feedback for event {event_id}: {e}")
            return False

        logger.info(f"Feedback stored for event {event_id}")
        return True

    def get_event_feedback(self, event_id: str) -> List[Feedback]:
        """Feedback rows of an event, newest first."""
        try:
            items = self._scan_all(self.feedback_table, Attr('event_id').eq(event_id))
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching feedback of event {event_id}: {e}")
            return []

        rows = [self._item_to_feedback(item) for item in items]
        rows = [row for row in rows if row]
        rows.sort(key=lambda row: row.created_at or '', reverse=True)
        return rows

    def get_event_stats(self, event_id: str) -> Optional[EventStats]:
        try:
            items = self._scan_all(self.feedback_table, Attr('event_id').eq(event_id))
            registrations = self._scan_all(
                self.attendees_table,
                Attr('event_id').eq(event_id) & Attr('status').eq(REGISTRATION_CONFIRMED)
            )
        except BACKEND_ERRORS as e:
            logger.error(f"Error fetching stats of event {event_id}: {e}")
            return None

        rows = [row for row in (self._item_to_feedback(item) for item in items) if row]
        return summarize_feedback(rows, total_registrations=len(registrations))

    # ------------------------------------------------------------------
    # Helpers

    def to_event(self, item: dict) -> Optional[Event]:
        """
        Convert a raw events record to an Event.

        Uses the placeholder image when the record has no cover image.

        Args:
            item: Record from the events table or the change feed

        Returns:
            Event object or None if conversion fails
        """
        try:
            cover_image = item.get('cover_image')
            has_cover = isinstance(cover_image, str) and bool(cover_image.strip())
            return Event(
                id=item['id'],
                title=item['title'],
                description=item.get('description') or '',
                date=item['date'],
                time=item['time'],
                location=item.get('location') or '',
                category=item.get('category') or '',
                cover_image=cover_image if has_cover else None,
                image=cover_image if has_cover else self.settings.placeholder_image,
                featured=bool(item.get('featured', False)),
                status=item.get('status') or STATUS_UPCOMING,
                type=item.get('type'),
                max_capacity=_to_int(item.get('max_capacity')),
                organizer=item.get('organizer'),
                tags=list(item.get('tags') or []),
                requirements=list(item.get('requirements') or []),
                materials=list(item.get('materials') or []),
                created_at=item.get('created_at'),
                updated_at=item.get('updated_at')
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to convert item to Event: {e}")
            return None

    def _item_to_feedback(self, item: dict) -> Optional[Feedback]:
        try:
            return Feedback(
                id=item['id'],
                event_id=item['event_id'],
                user_id=item['user_id'],
                rating=int(item['rating']),
                comment=item.get('comment') or item.get('feedback_text') or '',
                username=item.get('username'),
                created_at=item.get('created_at')
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to convert item to Feedback: {e}")
            return None

    def _sorted_events(self, items: List[dict]) -> List[Event]:
        events = [event for event in (self.to_event(item) for item in items) if event]
        events.sort(key=lambda event: (event.date, event.time))
        return events

    def _match_text(self, events: List[Event], text: str) -> List[Event]:
        needle = text.strip().lower()
        return [
            event for event in events
            if needle in event.title.lower() or needle in event.description.lower()
        ]

    def _scan_all(self, table, filter_expression=None) -> List[dict]:
        scan_args = {}
        if filter_expression is not None:
            scan_args['FilterExpression'] = filter_expression

        response = table.scan(**scan_args)
        items = response.get('Items', [])

        # Handle pagination
        while 'LastEvaluatedKey' in response:
            response = table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'], **scan_args
            )
            items.extend(response.get('Items', []))
        return items

    def _get_event(self, event_id: str) -> Optional[Event]:
        item = self.events_table.get_item(Key={'id': event_id}).get('Item')
        return self.to_event(item) if item else None

    def _require_event(self, event_id: str) -> Event:
        event = self._get_event(event_id)
        if event is None:
            raise NotFoundError(f"event {event_id} not found")
        return event

    def _require_user(self) -> str:
        user_id = self.session.current_user_id() if self.session else None
        if not user_id:
            raise AuthenticationError("user not authenticated")
        return user_id

    def _find_registration(self, event_id: str, user_id: str) -> Optional[Registration]:
        items = self._scan_all(
            self.attendees_table,
            Attr('event_id').eq(event_id) & Attr('user_id').eq(user_id)
        )
        if not items:
            return None
        # An active row wins over cancelled history rows
        items.sort(key=lambda item: item.get('status') != REGISTRATION_CONFIRMED)
        item = items[0]
        return Registration(
            id=item['id'],
            event_id=item['event_id'],
            user_id=item['user_id'],
            status=item.get('status', REGISTRATION_CONFIRMED),
            created_at=item.get('created_at')
        )

    def _find_bookmark(self, event_id: str, user_id: str) -> Optional[Bookmark]:
        items = self._scan_all(
            self.bookmarks_table,
            Attr('event_id').eq(event_id) & Attr('user_id').eq(user_id)
        )
        if not items:
            return None
        item = items[0]
        return Bookmark(
            id=item['id'],
            event_id=item['event_id'],
            user_id=item['user_id'],
            created_at=item.get('created_at')
        )

    def _find_feedback(self, event_id: str, user_id: str) -> Optional[Feedback]:
        items = self._scan_all(
            self.feedback_table,
            Attr('event_id').eq(event_id) & Attr('user_id').eq(user_id)
        )
        return self._item_to_feedback(items[0]) if items else None

    def _display_name(self, user_id: str) -> str:
        user = self.users_table.get_item(Key={'id': user_id}).get('Item') or {}
        if user.get('name'):
            return user['name']
        if user.get('email'):
            return user['email'].split('@')[0]
        return 'Anonymous User'

    def now(self) -> datetime:
        return self._clock()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()
