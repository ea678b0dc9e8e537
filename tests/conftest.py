"""Shared fixtures: mocked DynamoDB tables, clocks and a signed-in session."""
from datetime import datetime

import boto3
import pytest
from moto import mock_aws

from auth.session_manager import SessionManager
from config import Settings
from storage.event_repository import EventRepository
from storage.event_store import EventStore


class FakeClock:
    """Callable clock whose current value tests can move."""

    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value

    def advance(self, delta):
        self.value = self.value + delta


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


def _create_table(dynamodb, name, index_on=None):
    attributes = [{'AttributeName': 'id', 'AttributeType': 'S'}]
    extra = {}
    if index_on:
        attributes.append({'AttributeName': index_on, 'AttributeType': 'S'})
        extra['GlobalSecondaryIndexes'] = [
            {
                'IndexName': 'event-index',
                'KeySchema': [{'AttributeName': index_on, 'KeyType': 'HASH'}],
                'Projection': {'ProjectionType': 'ALL'},
            }
        ]
    return dynamodb.create_table(
        TableName=name,
        KeySchema=[{'AttributeName': 'id', 'KeyType': 'HASH'}],
        AttributeDefinitions=attributes,
        BillingMode='PAY_PER_REQUEST',
        **extra
    )


@pytest.fixture
def dynamodb():
    """Create the mock events, attendees, bookmarks, feedback and users tables."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        _create_table(resource, 'events')
        _create_table(resource, 'event_attendees', index_on='event_id')
        _create_table(resource, 'event_bookmarks')
        _create_table(resource, 'event_feedback')
        _create_table(resource, 'users')
        yield resource


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    """Local wall clock fixed at 2025-01-10 10:00."""
    return FakeClock(datetime(2025, 1, 10, 10, 0))


@pytest.fixture
def cache_clock():
    return FakeClock(1000.0)


@pytest.fixture
def session():
    """Session already holding a resolved user id."""
    manager = SessionManager()
    manager.set_session('access-token', user_id='user-1')
    return manager


@pytest.fixture
def store(cache_clock):
    return EventStore(ttl_seconds=300, clock=cache_clock)


@pytest.fixture
def repository(dynamodb, settings, session, store, clock):
    return EventRepository(
        settings=settings,
        session=session,
        store=store,
        dynamodb=dynamodb,
        clock=clock
    )


@pytest.fixture
def event_data():
    return {
        'title': 'Design Thinking Workshop',
        'description': 'Hands-on workshop on design thinking methodologies.',
        'date': '2025-01-12',
        'time': '2:00 PM',
        'location': 'MITC, Jeddah',
        'category': 'Workshop',
    }
