"""Builders shared by the coordinator and realtime tests."""
from unittest.mock import Mock

from processor.models import Event
from storage.event_store import EventStore


def make_record(event_id, **fields):
    """Raw events record as pushed by the change feed."""
    record = {
        'id': event_id,
        'title': f'Event {event_id}',
        'description': 'Description',
        'date': '2025-02-01',
        'time': '10:00',
        'location': 'Online',
        'status': 'upcoming',
    }
    record.update(fields)
    return record


def make_event(event_id, **fields):
    return record_to_event(make_record(event_id, **fields))


def record_to_event(record):
    return Event(
        id=record['id'],
        title=record['title'],
        description=record['description'],
        date=record['date'],
        time=record['time'],
        location=record['location'],
        status=record['status']
    )


def mock_repository():
    """Mock repository whose backend calls all succeed with empty data."""
    repository = Mock()
    repository.store = EventStore()
    repository.to_event.side_effect = record_to_event
    repository.list_all.return_value = []
    repository.get_registered_ids.return_value = []
    repository.get_bookmarked_ids.return_value = []
    return repository


class FakeFeed:
    """In-memory change feed delivering queued notification batches."""

    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.open_calls = 0
        self.closed = False

    def open(self):
        self.open_calls += 1

    def poll(self):
        if not self.batches:
            return []
        return self.batches.pop(0)

    def close(self):
        self.closed = True
