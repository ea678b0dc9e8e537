"""Tests for EventCoordinator."""
from datetime import datetime
from unittest.mock import Mock

import pytest
from boto3.dynamodb.conditions import Attr

from processor.models import ChangeNotification, MutationState
from storage.event_repository import EventRepository
from sync.coordinator import EventCoordinator
from tests.helpers import FakeFeed, make_event, mock_repository


@pytest.fixture
def repository():
    return mock_repository()


@pytest.fixture
def coordinator(repository):
    return EventCoordinator(repository)


class TestOptimisticMutations:
    """Test cases for register/unregister/bookmark/unbookmark."""

    def test_register_is_visible_before_backend_confirms(self, coordinator, repository):
        seen = []
        repository.register.side_effect = lambda event_id: seen.append(
            coordinator.is_registered(event_id)) or True
        repository.get_registered_ids.return_value = ['e1']

        result = coordinator.register('e1')

        assert seen == [True]
        assert result.state == MutationState.confirmed
        assert result
        assert coordinator.registered_ids == {'e1'}

    def test_failed_register_is_rolled_back(self, coordinator, repository):
        repository.register.return_value = False

        result = coordinator.register('e1')

        assert result.state == MutationState.rolled_back
        assert not result
        assert not coordinator.is_registered('e1')
        assert coordinator.error == 'register failed for event e1'
        repository.get_registered_ids.assert_not_called()

    def test_failed_unregister_restores_registration(self, coordinator, repository):
        coordinator.registered_ids = {'e1'}
        repository.unregister.return_value = False

        result = coordinator.unregister('e1')

        assert result.state == MutationState.rolled_back
        assert coordinator.is_registered('e1')

    def test_bookmark_then_unbookmark(self, coordinator, repository):
        repository.bookmark.return_value = True
        repository.unbookmark.return_value = True
        repository.get_bookmarked_ids.side_effect = [['e1'], []]

        assert coordinator.bookmark('e1')
        assert coordinator.is_bookmarked('e1')
        assert coordinator.unbookmark('e1')
        assert not coordinator.is_bookmarked('e1')

    def test_failed_bookmark_of_already_bookmarked_event_keeps_it(self, coordinator, repository):
        coordinator.bookmarked_ids = {'e1'}
        repository.bookmark.return_value = False

        assert not coordinator.bookmark('e1')
        assert coordinator.is_bookmarked('e1')

    def test_listeners_see_each_change(self, coordinator, repository):
        repository.register.return_value = False
        snapshots = []
        coordinator.subscribe(lambda state: snapshots.append(set(state.registered_ids)))

        coordinator.register('e1')

        assert snapshots == [{'e1'}, set()]

    def test_unsubscribed_listener_is_not_called(self, coordinator, repository):
        repository.register.return_value = True
        listener = Mock()
        unsubscribe = coordinator.subscribe(listener)
        unsubscribe()

        coordinator.register('e1')

        listener.assert_not_called()

    def test_failing_listener_does_not_break_mutation(self, coordinator, repository):
        repository.register.return_value = True
        repository.get_registered_ids.return_value = ['e1']
        coordinator.subscribe(Mock(side_effect=ValueError('render failed')))

        assert coordinator.register('e1')


class TestFeedback:
    """Test cases for submit_feedback."""

    @pytest.mark.parametrize('rating', [0, 6])
    def test_out_of_range_rating_never_reaches_repository(self, coordinator, repository, rating):
        assert not coordinator.submit_feedback('e1', rating, 'Nope')
        repository.submit_feedback.assert_not_called()
        assert coordinator.error == 'Rating must be between 1 and 5'

    def test_repository_decides_for_valid_rating(self, coordinator, repository):
        repository.submit_feedback.return_value = False

        assert not coordinator.submit_feedback('e1', 4, 'Good')
        repository.submit_feedback.assert_called_once_with('e1', 4, 'Good')


class TestRefresh:
    """Test cases for loading state."""

    def test_refresh_keeps_independent_copy(self, coordinator, repository):
        snapshot = [make_event('e1'), make_event('e2')]
        repository.list_all.return_value = snapshot
        repository.get_registered_ids.return_value = ['e2']

        events = coordinator.refresh()

        assert events == snapshot
        assert events is not snapshot
        assert coordinator.registered_ids == {'e2'}
        assert coordinator.loading is False

    def test_get_event_recomputes_status_first(self, coordinator, repository):
        calls = []
        repository.recompute_status.side_effect = lambda event_id: calls.append('recompute')
        repository.get_by_id.side_effect = lambda event_id: calls.append('get') or make_event(event_id)

        event = coordinator.get_event('e1')

        assert calls == ['recompute', 'get']
        assert event.id == 'e1'
        assert [e.id for e in coordinator.events] == ['e1']

    def test_get_missing_event(self, coordinator, repository):
        repository.get_by_id.return_value = None
        assert coordinator.get_event('missing') is None
        assert coordinator.events == []

    def test_sweep_refreshes_only_on_change(self, coordinator, repository):
        repository.recompute_all_statuses.return_value = 0
        assert coordinator.recompute_all_statuses() == 0
        repository.list_all.assert_not_called()

        repository.recompute_all_statuses.return_value = 2
        assert coordinator.recompute_all_statuses() == 2
        repository.list_all.assert_called_once()

    def test_status_of_uses_repository_clock(self, coordinator, repository):
        repository.now.return_value = datetime(2025, 3, 1)

        assert coordinator.status_of(make_event('e1', date='2025-02-01')) == 'completed'


class TestManualCounterparts:
    """Test cases for the screen-driven list updates."""

    def test_handle_deletion(self, coordinator, repository):
        coordinator.events = [make_event('e1'), make_event('e2')]
        coordinator.registered_ids = {'e1'}
        coordinator.bookmarked_ids = {'e1'}
        repository.store.put([make_event('e1')])
        repository.list_all.return_value = [make_event('e2')]

        coordinator.handle_deletion('e1')

        assert [e.id for e in coordinator.events] == ['e2']
        assert 'e1' not in coordinator.registered_ids
        assert 'e1' not in coordinator.bookmarked_ids
        assert repository.store.get() is None
        repository.list_all.assert_called_once()

    def test_update_in_place_then_refresh(self, coordinator, repository):
        coordinator.events = [make_event('e1', title='Old')]
        updated = make_event('e1', title='New')
        repository.list_all.return_value = [updated]

        coordinator.update_in_place(updated)

        assert [e.title for e in coordinator.events] == ['New']

    def test_add_new_and_remove_from_view_invalidate_and_refresh(self, coordinator, repository):
        repository.list_all.return_value = [make_event('e1')]
        repository.store.put([])

        coordinator.add_new(make_event('e1'))
        assert repository.store.get() is None

        repository.store.put([])
        coordinator.remove_from_view('e1')
        assert repository.store.get() is None
        assert repository.list_all.call_count == 2


class TestRealtimeLifecycle:
    """Test cases for starting and closing the subscription."""

    def test_start_realtime_subscribes_once(self, coordinator):
        feed = FakeFeed()

        reconciler = coordinator.start_realtime(feed)
        again = coordinator.start_realtime(feed)

        assert again is reconciler
        assert feed.open_calls == 1

    def test_close_tears_down_subscription(self, coordinator):
        feed = FakeFeed()
        coordinator.start_realtime(feed)
        coordinator.subscribe(Mock())

        coordinator.close()

        assert feed.closed
        assert coordinator.reconciler is None
        assert coordinator._listeners == []


class TestWithRepository:
    """End-to-end checks against the mocked DynamoDB repository."""

    def test_double_register_yields_one_active_row(self, repository_on_dynamodb, dynamodb):
        dynamodb.Table('events').put_item(Item={
            'id': 'e1', 'title': 'Startup Strategies', 'description': 'Launch and grow',
            'date': '2025-02-01', 'time': '14:00', 'location': 'MITC, Jeddah',
            'status': 'upcoming',
        })
        coordinator = EventCoordinator(repository_on_dynamodb)

        first = coordinator.register('e1')
        second = coordinator.register('e1')

        assert first.state == MutationState.confirmed
        assert second.state == MutationState.rolled_back
        assert coordinator.is_registered('e1')
        rows = dynamodb.Table('event_attendees').scan(
            FilterExpression=Attr('event_id').eq('e1') & Attr('status').eq('confirmed')
        )['Items']
        assert len(rows) == 1

    def test_refresh_and_realtime_delete(self, repository_on_dynamodb, dynamodb):
        dynamodb.Table('events').put_item(Item={
            'id': 'e1', 'title': 'Table Tennis', 'description': 'Rally',
            'date': '2025-02-01', 'time': '12:00', 'location': 'MITC, Jeddah',
        })
        coordinator = EventCoordinator(repository_on_dynamodb)
        coordinator.refresh()
        coordinator.bookmark('e1')
        reconciler = coordinator.start_realtime(FakeFeed())

        dynamodb.Table('events').delete_item(Key={'id': 'e1'})
        reconciler.apply(ChangeNotification('delete', old={'id': 'e1'}))

        assert coordinator.events == []
        assert not coordinator.is_bookmarked('e1')
        assert repository_on_dynamodb.list_all() == []


@pytest.fixture
def repository_on_dynamodb(dynamodb, settings, session, store, clock):
    return EventRepository(settings=settings, session=session, store=store,
                           dynamodb=dynamodb, clock=clock)
