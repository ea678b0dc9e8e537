"""Change feed for the events table and its reconciliation into app state."""
import logging
import time
from typing import Dict, List, Optional, Set

import boto3
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import ChangeNotification

logger = logging.getLogger(__name__)

NOTIFICATION_INSERT = 'insert'
NOTIFICATION_UPDATE = 'update'
NOTIFICATION_DELETE = 'delete'

STREAM_EVENT_TYPES = {
    'INSERT': NOTIFICATION_INSERT,
    'MODIFY': NOTIFICATION_UPDATE,
    'REMOVE': NOTIFICATION_DELETE,
}

_deserializer = TypeDeserializer()


def _deserialize_image(image: Optional[dict]) -> Optional[dict]:
    if not image:
        return None
    return {name: _deserializer.deserialize(value) for name, value in image.items()}


def notification_from_stream_record(record: dict) -> Optional[ChangeNotification]:
    """
    Convert a DynamoDB stream record to a ChangeNotification.

    Args:
        record: Stream record with eventName and a dynamodb section

    Returns:
        ChangeNotification, or None for unknown event names
    """
    change_type = STREAM_EVENT_TYPES.get(record.get('eventName'))
    if change_type is None:
        logger.warning(f"Ignoring stream record with event name {record.get('eventName')!r}")
        return None

    body = record.get('dynamodb', {})
    new_image = _deserialize_image(body.get('NewImage'))
    old_image = _deserialize_image(body.get('OldImage'))
    if old_image is None and body.get('Keys'):
        old_image = _deserialize_image(body['Keys'])

    return ChangeNotification(type=change_type, new=new_image, old=old_image)


class DynamoDBStreamFeed:
    """Polls the DynamoDB stream of the events table."""

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        streams_client=None,
        dynamodb_client=None
    ):
        """
        Initialize stream clients.

        Args:
            table_name: Table whose stream is followed
            region_name: AWS region
            streams_client: Pre-built dynamodbstreams client
            dynamodb_client: Pre-built dynamodb client used to find the stream
        """
        self.table_name = table_name
        self.streams = streams_client or boto3.client('dynamodbstreams', region_name=region_name)
        self.dynamodb = dynamodb_client or boto3.client('dynamodb', region_name=region_name)
        self.stream_arn: Optional[str] = None
        self._iterators: Dict[str, str] = {}
        self._known_shards: Set[str] = set()

    @property
    def is_open(self) -> bool:
        return self.stream_arn is not None

    def open(self) -> None:
        """
        Resolve the table's latest stream and start reading at its tip.

        Raises:
            RuntimeError: If the table has no stream enabled
        """
        table = self.dynamodb.describe_table(TableName=self.table_name)['Table']
        stream_arn = table.get('LatestStreamArn')
        if not stream_arn:
            raise RuntimeError(f"Table {self.table_name} has no stream enabled")

        iterators = {}
        for shard in self._list_shards(stream_arn):
            response = self.streams.get_shard_iterator(
                StreamArn=stream_arn,
                ShardId=shard['ShardId'],
                ShardIteratorType='LATEST'
            )
            iterators[shard['ShardId']] = response['ShardIterator']

        self.stream_arn = stream_arn
        self._iterators = iterators
        self._known_shards = set(iterators)
        logger.info(f"Opened stream for {self.table_name} with {len(iterators)} shards")

    def poll(self) -> List[ChangeNotification]:
        """
        Read the records available on every open shard.

        Returns:
            Notifications in the order the transport delivered them
        """
        notifications = []
        for shard_id, iterator in list(self._iterators.items()):
            try:
                response = self.streams.get_records(ShardIterator=iterator)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Error reading shard {shard_id}: {e}")
                continue

            for record in response.get('Records', []):
                notification = notification_from_stream_record(record)
                if notification:
                    notifications.append(notification)

            next_iterator = response.get('NextShardIterator')
            if next_iterator:
                self._iterators[shard_id] = next_iterator
            else:
                # Shard closed; its records continue in child shards
                del self._iterators[shard_id]
                self._open_child_shards(shard_id)
        return notifications

    def _list_shards(self, stream_arn: str) -> List[dict]:
        describe_args = {'StreamArn': stream_arn}
        description = self.streams.describe_stream(**describe_args)['StreamDescription']
        shards = list(description.get('Shards', []))

        # Handle pagination
        while description.get('LastEvaluatedShardId'):
            description = self.streams.describe_stream(
                ExclusiveStartShardId=description['LastEvaluatedShardId'], **describe_args
            )['StreamDescription']
            shards.extend(description.get('Shards', []))
        return shards

    def _open_child_shards(self, parent_id: str) -> None:
        try:
            for shard in self._list_shards(self.stream_arn):
                shard_id = shard['ShardId']
                if shard.get('ParentShardId') != parent_id or shard_id in self._known_shards:
                    continue
                response = self.streams.get_shard_iterator(
                    StreamArn=self.stream_arn,
                    ShardId=shard_id,
                    ShardIteratorType='TRIM_HORIZON'
                )
                self._iterators[shard_id] = response['ShardIterator']
                self._known_shards.add(shard_id)
                logger.info(f"Following child shard {shard_id} of {parent_id}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error discovering child shards of {parent_id}: {e}")

    def close(self) -> None:
        self._iterators = {}
        self._known_shards = set()
        self.stream_arn = None


class RealtimeReconciler:
    """Applies change notifications to the coordinator's in-memory state."""

    def __init__(self, coordinator, store, feed=None):
        """
        Initialize the reconciler.

        Args:
            coordinator: EventCoordinator whose state is updated
            store: EventStore invalidated on every notification
            feed: Source with open(), poll() and close()
        """
        self.coordinator = coordinator
        self.store = store
        self.feed = feed
        self.subscribed = False

    def subscribe(self) -> bool:
        """Open the feed once; later calls are no-ops."""
        if self.subscribed:
            return False
        if self.feed is None:
            raise RuntimeError("No change feed configured")
        self.feed.open()
        self.subscribed = True
        logger.info("Subscribed to event change feed")
        return True

    def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        self.feed.close()
        self.subscribed = False
        logger.info("Unsubscribed from event change feed")

    def apply(self, notification: ChangeNotification) -> None:
        """
        Apply one notification and invalidate the event cache.

        Args:
            notification: Insert, update or delete notification
        """
        if notification.type == NOTIFICATION_INSERT:
            if notification.new:
                self.coordinator.apply_insert(notification.new)
        elif notification.type == NOTIFICATION_UPDATE:
            if notification.new:
                self.coordinator.apply_update(notification.new)
        elif notification.type == NOTIFICATION_DELETE:
            record_id = notification.record_id
            if record_id:
                self.coordinator.apply_delete(record_id)
        else:
            logger.warning(f"Unknown notification type: {notification.type!r}")

        self.store.invalidate()

    def poll_once(self) -> int:
        """
        Pull pending notifications from the feed and apply them in order.

        Returns:
            Number of notifications applied
        """
        if not self.subscribed:
            return 0

        notifications = self.feed.poll()
        for notification in notifications:
            self.apply(notification)
        if notifications:
            logger.info(f"Applied {len(notifications)} change notifications")
        return len(notifications)

    def listen(self, interval: float = 5, max_polls: Optional[int] = None) -> int:
        """
        Poll the feed until unsubscribed or max_polls is reached.

        Returns:
            Total notifications applied
        """
        self.subscribe()
        applied = 0
        polls = 0
        while self.subscribed and (max_polls is None or polls < max_polls):
            applied += self.poll_once()
            polls += 1
            if max_polls is None or polls < max_polls:
                time.sleep(interval)
        return applied
