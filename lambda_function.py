"""AWS Lambda handler for the scheduled event status sweep."""
import json
import logging
import time
from typing import Dict, Any

from config import load_settings
from storage.event_repository import EventRepository


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Recompute the lifecycle status of every event.

    Args:
        event: EventBridge schedule payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and sweep statistics
    """
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Status sweep started",
        extra={'table_name': settings.events_table}
    )

    # Only client setup can raise; the sweep logs backend errors and returns a count
    try:
        repository = EventRepository(settings=settings)
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Status sweep failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Status sweep failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    changed = repository.recompute_all_statuses()
    duration = time.time() - start_time
    logger.info(
        "Status sweep completed",
        extra={
            'duration_seconds': round(duration, 2),
            'events_changed': changed
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Status sweep completed',
            'statistics': {
                'events_changed': changed,
                'duration_seconds': round(duration, 2)
            }
        })
    }
