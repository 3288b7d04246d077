import logging
import math
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import wraps

import pytz

from cafe.exceptions import CafeError
from resources.constants import ADMIN_ID, TIME_ZONE

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MINUTES_PER_HOUR = Decimal(60)


class Auth:
    """
    Handles staff authorization for bot commands.
    """

    @staticmethod
    def is_authorized_user(user_id):
        """
        Check if the provided Telegram ID matches the admin ID.

        Args:
            user_id (int): The Telegram ID of the sender.

        Returns:
            bool: True if the user is authorized, False otherwise.
        """
        return user_id == ADMIN_ID

    @staticmethod
    def authorized_user(func):
        """
        Decorator to ensure that the function is only executed by authorized users.

        Args:
            func (callable): The function to wrap.

        Returns:
            callable: A wrapped function that checks authorization before execution.
        """

        @wraps(func)
        async def wrapper(self, event, *args, **kwargs):
            if not Auth.is_authorized_user(event.sender_id):
                await event.respond("❌ You are not authorized to use this command.")
                return
            return await func(self, event, *args, **kwargs)

        return wrapper

    @staticmethod
    def actor(event):
        """Identifier recorded as the actor of changes made from a chat."""
        return f"tg:{event.sender_id}"

    @staticmethod
    def replies_errors(func):
        """
        Decorator turning billing errors raised by a handler into a chat reply.
        Anything that is not a `CafeError` propagates.
        """

        @wraps(func)
        async def wrapper(self, event, *args, **kwargs):
            try:
                return await func(self, event, *args, **kwargs)
            except CafeError as e:
                logger.warning("%s refused: %s", func.__name__, e.message)
                await event.respond(f"❌ {e.message}")

        return wrapper


class Utilities:
    """
    A collection of utility methods for money, time and duration handling.
    """

    @staticmethod
    def utcnow():
        """Current UTC instant as a naive datetime, the form stored in the database."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_money(value):
        """
        Convert a number or numeric string to a two-decimal `Decimal`.

        Raises:
            ValueError: If the value is not a finite number.
        """
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
        if not amount.is_finite():
            raise ValueError(f"Invalid amount: {value!r}")
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def billable_minutes(duration: timedelta) -> int:
        """Elapsed time rounded up to the next whole minute. Negative durations bill nothing."""
        seconds = duration.total_seconds()
        if seconds <= 0:
            return 0
        return math.ceil(seconds / 60)

    @classmethod
    def calculate_cost(cls, duration: timedelta, hourly_rate) -> Decimal:
        """
        Cost of a usage period: round(ceil(minutes) / 60 * rate, 2).

        The minute count is rounded up before pricing so partial minutes are
        always billed, then the amount is rounded half-up to cents.
        """
        minutes = Decimal(cls.billable_minutes(duration))
        rate = Decimal(str(hourly_rate))
        return (minutes * rate / MINUTES_PER_HOUR).quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def get_day_suffix(day):
        """
        Get the appropriate suffix (st, nd, rd, th) for a given day.

        Args:
            day (int): The day of the month.

        Returns:
            str: The suffix for the day.
        """
        if 11 <= day <= 13:
            return "th"
        return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")

    @staticmethod
    def parse_date(date_str: str) -> date:
        """Parse a `YYYY-MM-DD` string. Raises ValueError on anything else."""
        return datetime.strptime(date_str, "%Y-%m-%d").date()

    @staticmethod
    def as_datetime(value, end_of_day=False) -> datetime:
        """
        Accept a date or datetime bound of a range. A bare date covers the whole
        day: it starts at midnight, or ends just before the next midnight when
        `end_of_day` is set.
        """
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            return value
        if isinstance(value, date):
            moment = datetime.combine(value, datetime.min.time())
            if end_of_day:
                moment += timedelta(days=1) - timedelta(microseconds=1)
            return moment
        raise ValueError(f"Expected a date or datetime, got {value!r}")

    @classmethod
    def get_date_str(cls, moment: datetime):
        """
        Convert a stored UTC datetime into a human-readable local date string.

        Args:
            moment (datetime): Naive UTC datetime as read from the database.

        Returns:
            str: The formatted date string in the configured time zone.
        """
        local_tz = pytz.timezone(TIME_ZONE)
        local = pytz.utc.localize(moment).astimezone(local_tz)
        day_suffix = cls.get_day_suffix(local.day)
        return local.strftime(f"{local.day}{day_suffix} %B %Y, %I:%M %p %Z")

    @classmethod
    def parse_duration_to_human_readable(cls, duration_seconds: int) -> str:
        """
        Convert a duration in seconds to a human-readable format.

        Args:
            duration_seconds (int): The duration in seconds.

        Returns:
            str: The human-readable duration string.
        """
        duration_seconds = int(duration_seconds)
        if duration_seconds <= 0:
            return "0 seconds"
        parts = []
        if duration_seconds // (24 * 3600) > 0:
            parts.append(f"{duration_seconds // (24 * 3600)} days")
            duration_seconds %= 24 * 3600
        if duration_seconds // 3600 > 0:
            parts.append(f"{duration_seconds // 3600} hours")
            duration_seconds %= 3600
        if duration_seconds // 60 > 0:
            parts.append(f"{duration_seconds // 60} minutes")
            duration_seconds %= 60
        if duration_seconds > 0:
            parts.append(f"{duration_seconds} seconds")
        return ", ".join(parts)

    @staticmethod
    def format_money(amount, currency):
        return f"{Decimal(amount):,.2f} {currency}"
