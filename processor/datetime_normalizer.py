"""Date and time normalization plus derived lifecycle status."""
import logging
import re
from datetime import date, datetime
from typing import Optional

logger = logging.getLogger(__name__)

STATUS_UPCOMING = 'upcoming'
STATUS_COMPLETED = 'completed'

TIME_24H_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')
TIME_12H_PATTERN = re.compile(r'^(0?[1-9]|1[0-2]):([0-5]\d)\s*([AaPp][Mm])$')


class DateTimeNormalizer:
    """Validates and normalizes event dates and times."""

    DATE_FORMATS = [
        '%Y-%m-%d',      # ISO 8601
        '%m/%d/%Y',      # US format
        '%m-%d-%Y',      # US format with dashes
        '%B %d, %Y',     # Full month name
        '%b %d, %Y',     # Abbreviated month name
        '%B %d %Y',
        '%b %d %Y',
        '%d %B %Y',
        '%d %b %Y',
        '%Y/%m/%d',      # Alternative ISO format
    ]

    def validate_and_format_date(
        self,
        value: str,
        today: Optional[date] = None
    ) -> Optional[str]:
        """
        Normalize a date to ISO 8601 format (YYYY-MM-DD).

        Dates before today are accepted; a warning is logged.

        Args:
            value: Date string in one of the supported formats
            today: Reference day for the past-date warning

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        if not value or not str(value).strip():
            return None

        parsed = self._parse_date(str(value).strip())
        if parsed is None:
            logger.warning(f"Unparseable date: {value!r}")
            return None

        iso_date = parsed.strftime('%Y-%m-%d')
        if self.is_past_date(iso_date, today):
            logger.warning(f"Date {iso_date} is earlier than today")
        return iso_date

    def _parse_date(self, text: str) -> Optional[date]:
        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

        # Full ISO timestamps, e.g. 2025-01-10T14:00:00+00:00
        try:
            return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
        except ValueError:
            return None

    def is_past_date(self, iso_date: str, today: Optional[date] = None) -> bool:
        """Return True if iso_date is strictly before today."""
        today = today or date.today()
        try:
            return datetime.strptime(iso_date, '%Y-%m-%d').date() < today
        except (TypeError, ValueError):
            return False

    def today_iso(self, today: Optional[date] = None) -> str:
        return (today or date.today()).strftime('%Y-%m-%d')

    def validate_time_format(self, value: str) -> bool:
        """
        Check for 24-hour H:MM/HH:MM or 12-hour H:MM AM/PM.

        Args:
            value: Time string to check

        Returns:
            True if the time is in one of the accepted formats
        """
        if not isinstance(value, str):
            return False
        text = value.strip()
        return bool(TIME_24H_PATTERN.match(text) or TIME_12H_PATTERN.match(text))

    def normalize_time_format(self, value: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            value: Time string in 24-hour or 12-hour format

        Returns:
            24-hour formatted time string or None if the input is invalid
        """
        if not isinstance(value, str):
            return None
        text = value.strip()

        match = TIME_24H_PATTERN.match(text)
        if match:
            return f"{int(match.group(1)):02d}:{match.group(2)}"

        match = TIME_12H_PATTERN.match(text)
        if match:
            hour = int(match.group(1))
            meridiem = match.group(3).upper()
            if meridiem == 'AM' and hour == 12:
                hour = 0
            elif meridiem == 'PM' and hour != 12:
                hour += 12
            return f"{hour:02d}:{match.group(2)}"

        logger.warning(f"Invalid time format: {value!r}")
        return None

    def combine_date_time(self, date_str: str, time_str: str) -> Optional[datetime]:
        """Combine an event date and time into one local instant."""
        iso_date = self._parse_date(date_str.strip()) if date_str else None
        normalized_time = self.normalize_time_format(time_str) if time_str else None
        if iso_date is None or normalized_time is None:
            return None

        hour, minute = (int(part) for part in normalized_time.split(':'))
        return datetime(iso_date.year, iso_date.month, iso_date.day, hour, minute)

    def compute_status(
        self,
        date_str: str,
        time_str: str,
        now: Optional[datetime] = None
    ) -> Optional[str]:
        """
        Derive the automatic lifecycle status of an event.

        Args:
            date_str: Event date
            time_str: Event start time
            now: Reference instant (defaults to the current local time)

        Returns:
            'completed' if the event instant is strictly before now,
            'upcoming' otherwise, None if date or time cannot be parsed
        """
        instant = self.combine_date_time(date_str, time_str)
        if instant is None:
            return None

        now = now or datetime.now()
        if now.tzinfo is not None:
            now = now.astimezone().replace(tzinfo=None)
        return STATUS_COMPLETED if instant < now else STATUS_UPCOMING
