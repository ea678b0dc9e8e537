"""State container screens use to read and mutate events."""
import logging
from typing import Callable, List, Optional, Set

from processor.lifecycle import display_status, is_valid_rating
from processor.models import Event, MutationResult, MutationState
from sync.realtime import RealtimeReconciler

logger = logging.getLogger(__name__)

ACTION_REGISTER = 'register'
ACTION_UNREGISTER = 'unregister'
ACTION_BOOKMARK = 'bookmark'
ACTION_UNBOOKMARK = 'unbookmark'


class EventCoordinator:
    """
    Owns the rendered event list and the user's registered/bookmarked ids.

    Listeners registered with subscribe() are called with the coordinator
    after every state change. The realtime subscription is started and torn
    down explicitly through start_realtime() and close().
    """

    def __init__(self, repository, store=None):
        """
        Initialize empty state.

        Args:
            repository: EventRepository used for every backend call
            store: EventStore shared with the repository
        """
        self.repository = repository
        self.store = store or repository.store
        self.events: List[Event] = []
        self.registered_ids: Set[str] = set()
        self.bookmarked_ids: Set[str] = set()
        self.loading = False
        self.error: Optional[str] = None
        self.reconciler: Optional[RealtimeReconciler] = None
        self._listeners: List[Callable] = []

    # ------------------------------------------------------------------
    # Listeners

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Loading

    def refresh(self) -> List[Event]:
        """Reload the event list and the user's id sets from the repository."""
        self.loading = True
        self._notify()

        self.events = list(self.repository.list_all())
        self.registered_ids = set(self.repository.get_registered_ids())
        self.bookmarked_ids = set(self.repository.get_bookmarked_ids())

        self.loading = False
        self._notify()
        return self.events

    def refresh_user_state(self) -> None:
        self.registered_ids = set(self.repository.get_registered_ids())
        self.bookmarked_ids = set(self.repository.get_bookmarked_ids())
        self._notify()

    def get_event(self, event_id: str) -> Optional[Event]:
        """
        Load one event for display, recomputing its status first.

        Returns:
            The event, or None if it does not exist
        """
        self.repository.recompute_status(event_id)
        event = self.repository.get_by_id(event_id)
        if event is not None:
            self._upsert(event)
            self._notify()
        return event

    def recompute_all_statuses(self) -> int:
        changed = self.repository.recompute_all_statuses()
        if changed:
            self.refresh()
        return changed

    def status_of(self, event: Event) -> str:
        return display_status(event, self.repository.now())

    def is_registered(self, event_id: str) -> bool:
        return event_id in self.registered_ids

    def is_bookmarked(self, event_id: str) -> bool:
        return event_id in self.bookmarked_ids

    # ------------------------------------------------------------------
    # Optimistic mutations

    def register(self, event_id: str) -> MutationResult:
        return self._mutate(ACTION_REGISTER, event_id, self.registered_ids, True,
                            self.repository.register)

    def unregister(self, event_id: str) -> MutationResult:
        return self._mutate(ACTION_UNREGISTER, event_id, self.registered_ids, False,
                            self.repository.unregister)

    def bookmark(self, event_id: str) -> MutationResult:
        return self._mutate(ACTION_BOOKMARK, event_id, self.bookmarked_ids, True,
                            self.repository.bookmark)

    def unbookmark(self, event_id: str) -> MutationResult:
        return self._mutate(ACTION_UNBOOKMARK, event_id, self.bookmarked_ids, False,
                            self.repository.unbookmark)

    def _mutate(
        self,
        action: str,
        event_id: str,
        ids: Set[str],
        add: bool,
        persist: Callable[[str], bool]
    ) -> MutationResult:
        """
        Apply a set change locally, persist it, then confirm or roll back.

        Args:
            action: Name of the mutation for logging
            event_id: Affected event
            ids: The registered or bookmarked id set
            add: True to add event_id to ids, False to remove it
            persist: Repository call performing the backend write

        Returns:
            MutationResult in state confirmed or rolled_back
        """
        result = MutationResult(action=action, event_id=event_id)
        was_present = event_id in ids
        if add:
            ids.add(event_id)
        else:
            ids.discard(event_id)
        self._notify()

        if persist(event_id):
            result.state = MutationState.confirmed
            self.error = None
            self.refresh_user_state()
            return result

        if was_present:
            ids.add(event_id)
        else:
            ids.discard(event_id)
        result.state = MutationState.rolled_back
        self.error = f"{action} failed for event {event_id}"
        logger.warning(f"Rolled back {action} of event {event_id}")
        self._notify()
        return result

    def submit_feedback(self, event_id: str, rating: int, comment: str) -> bool:
        if not is_valid_rating(rating):
            self.error = "Rating must be between 1 and 5"
            self._notify()
            return False

        submitted = self.repository.submit_feedback(event_id, rating, comment)
        self.error = None if submitted else f"feedback failed for event {event_id}"
        self._notify()
        return submitted

    # ------------------------------------------------------------------
    # Manual counterparts of the realtime updates

    def handle_deletion(self, event_id: str) -> None:
        self._remove(event_id)
        self._purge_ids(event_id)
        self.store.invalidate()
        self.refresh()

    def update_in_place(self, event: Event) -> None:
        self._upsert(event)
        self.store.invalidate()
        self.refresh()

    def add_new(self, event: Event) -> None:
        if not self._contains(event.id):
            self.events.append(event)
        self.store.invalidate()
        self.refresh()

    def remove_from_view(self, event_id: str) -> None:
        self._remove(event_id)
        self.store.invalidate()
        self.refresh()

    # ------------------------------------------------------------------
    # Realtime entry points

    def apply_insert(self, record: dict) -> None:
        event = self.repository.to_event(record)
        if event is None or self._contains(event.id):
            return
        self.events.append(event)
        self._notify()

    def apply_update(self, record: dict) -> None:
        event = self.repository.to_event(record)
        if event is None:
            return
        self._upsert(event)
        self._notify()

    def apply_delete(self, event_id: str) -> None:
        self._remove(event_id)
        self._purge_ids(event_id)
        self._notify()

    def start_realtime(self, feed) -> RealtimeReconciler:
        """Create the reconciler for feed and subscribe it once."""
        if self.reconciler is None:
            self.reconciler = RealtimeReconciler(self, self.store, feed)
        self.reconciler.subscribe()
        return self.reconciler

    def close(self) -> None:
        if self.reconciler is not None:
            self.reconciler.unsubscribe()
            self.reconciler = None
        self._listeners = []

    # ------------------------------------------------------------------
    # List helpers

    def _contains(self, event_id: str) -> bool:
        return any(event.id == event_id for event in self.events)

    def _upsert(self, event: Event) -> None:
        for index, existing in enumerate(self.events):
            if existing.id == event.id:
                self.events[index] = event
                return
        self.events.append(event)

    def _remove(self, event_id: str) -> None:
        self.events = [event for event in self.events if event.id != event_id]

    def _purge_ids(self, event_id: str) -> None:
        self.registered_ids.discard(event_id)
        self.bookmarked_ids.discard(event_id)
