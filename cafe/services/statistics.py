"""
Read-only aggregation of revenue and usage.

Revenue is the absolute sum of ComputerUsage charges, bucketed by the UTC day
the charge was recorded. Usage figures are computed over the sessions of a
range: sessions that started inside it, have not ended after it, and were not
terminated. Empty ranges give zeroed results.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import func, or_, select

from cafe.baseModel import Lifecycle
from cafe.computers import Computer, UsageStatus
from cafe.exceptions import InvalidDateRange
from cafe.misc import CENT, Utilities
from cafe.sessions import Session, SessionStatus
from cafe.transactions import Transaction, TransactionType
from cafe.users import User

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class StatisticsSummary:
    total_revenue: Decimal
    active_users_count: int
    active_sessions_count: int
    computers_in_use_count: int
    available_computers_count: int


@dataclass
class DailyRevenue:
    date: date
    amount: Decimal


@dataclass
class RevenueSummary:
    total_revenue: Decimal
    average_revenue_per_user: Decimal
    average_revenue_per_computer: Decimal
    daily_revenue: List[DailyRevenue] = field(default_factory=list)


@dataclass
class HourlyUsage:
    hour: int
    count: int


@dataclass
class TopUser:
    user_id: str
    user_name: str
    total_time: timedelta
    total_spent: Decimal


@dataclass
class UsageStatistics:
    average_session_duration: Decimal  # minutes
    peak_usage_hours: List[HourlyUsage] = field(default_factory=list)
    top_users: List[TopUser] = field(default_factory=list)


class StatisticsReader:
    """Revenue and usage figures. Never writes."""

    PEAK_HOURS = 5
    TOP_USERS = 10

    def __init__(self, storage, clock=Utilities.utcnow):
        self.storage = storage
        self.clock = clock

    @staticmethod
    def _range(start, end):
        start = Utilities.as_datetime(start)
        end = Utilities.as_datetime(end, end_of_day=True)
        if start > end:
            raise InvalidDateRange(start, end)
        return start, end

    @staticmethod
    def _count(uow, statement):
        uow.check_deadline()
        return uow.session.scalar(statement) or 0

    def _usage_charges(self, uow, start, end):
        return uow.scalars(
            uow.query(Transaction).where(
                Transaction.type == TransactionType.COMPUTER_USAGE,
                Transaction.created_at >= start,
                Transaction.created_at <= end,
            )
        )

    def _sessions_in_range(self, uow, start, end):
        return uow.scalars(
            uow.query(Session).where(
                Session.start_time >= start,
                or_(Session.end_time.is_(None), Session.end_time <= end),
                Session.status != SessionStatus.TERMINATED,
            )
        )

    # --- revenue ------------------------------------------------------------

    def get_total_revenue(self, start, end) -> Decimal:
        start, end = self._range(start, end)
        with self.storage.unit_of_work() as uow:
            return sum(
                (abs(t.amount) for t in self._usage_charges(uow, start, end)), ZERO
            )

    def get_daily_revenue(self, start, end) -> List[DailyRevenue]:
        """One bucket per UTC day of the range, days without charges included."""
        start, end = self._range(start, end)
        with self.storage.unit_of_work() as uow:
            buckets = defaultdict(lambda: ZERO)
            for t in self._usage_charges(uow, start, end):
                buckets[t.created_at.date()] += abs(t.amount)

        days = []
        day = start.date()
        while day <= end.date():
            days.append(DailyRevenue(date=day, amount=buckets[day]))
            day += timedelta(days=1)
        return days

    def get_revenue_summary(self, start, end) -> RevenueSummary:
        daily = self.get_daily_revenue(start, end)
        total = sum((d.amount for d in daily), ZERO)
        with self.storage.unit_of_work() as uow:
            users = self._count(
                uow,
                select(func.count()).select_from(User).where(User.lifecycle == Lifecycle.ACTIVE),
            )
            computers = self._count(
                uow,
                select(func.count())
                .select_from(Computer)
                .where(Computer.lifecycle == Lifecycle.ACTIVE),
            )
        return RevenueSummary(
            total_revenue=total,
            average_revenue_per_user=(total / users).quantize(CENT) if users else ZERO,
            average_revenue_per_computer=(total / computers).quantize(CENT) if computers else ZERO,
            daily_revenue=daily,
        )

    # --- usage --------------------------------------------------------------

    def get_summary(self, now=None) -> StatisticsSummary:
        """Today's revenue and the current occupancy of the cafe."""
        now = now or self.clock()
        today = now.date()
        revenue = self.get_total_revenue(today, today)
        with self.storage.unit_of_work() as uow:
            active = uow.scalars(
                uow.query(Session).where(Session.status == SessionStatus.ACTIVE)
            )
            statuses = Counter(
                uow.scalars(
                    select(Computer.usage_status).where(
                        Computer.lifecycle == Lifecycle.ACTIVE
                    )
                )
            )
            return StatisticsSummary(
                total_revenue=revenue,
                active_users_count=len({s.user_id for s in active}),
                active_sessions_count=len(active),
                computers_in_use_count=statuses[UsageStatus.IN_USE],
                available_computers_count=statuses[UsageStatus.AVAILABLE],
            )

    @staticmethod
    def _hours_covered(session, now):
        """Hours of the day (0-23) a session overlaps, each counted once."""
        end = session.end_time or now
        hour = session.start_time.replace(minute=0, second=0, microsecond=0)
        hours = set()
        while hour <= end and len(hours) < 24:
            hours.add(hour.hour)
            hour += timedelta(hours=1)
        return hours

    def _top_users(self, uow, sessions, count):
        spent = defaultdict(lambda: ZERO)
        played = defaultdict(timedelta)
        for s in sessions:
            spent[s.user_id] += s.total_cost
            if s.end_time is not None:
                played[s.user_id] += s.duration

        top = []
        for user_id in sorted(spent, key=lambda u: spent[u], reverse=True):
            user = uow.get_user(user_id)
            if user is None:
                continue
            top.append(
                TopUser(
                    user_id=user.id,
                    user_name=user.username,
                    total_time=played[user_id],
                    total_spent=spent[user_id],
                )
            )
            if len(top) == count:
                break
        return top

    def get_usage_statistics(self, start, end) -> UsageStatistics:
        start, end = self._range(start, end)
        now = self.clock()
        with self.storage.unit_of_work() as uow:
            sessions = self._sessions_in_range(uow, start, end)
            if not sessions:
                return UsageStatistics(average_session_duration=ZERO)

            completed = [s for s in sessions if s.end_time is not None]
            average = ZERO
            if completed:
                seconds = sum(s.duration_seconds for s in completed)
                average = (Decimal(seconds) / len(completed) / 60).quantize(CENT)

            usage = Counter()
            for s in sessions:
                usage.update(self._hours_covered(s, now))
            peak = [
                HourlyUsage(hour=hour, count=count)
                for hour, count in sorted(usage.items(), key=lambda kv: (-kv[1], kv[0]))
            ][: self.PEAK_HOURS]

            return UsageStatistics(
                average_session_duration=average,
                peak_usage_hours=peak,
                top_users=self._top_users(uow, sessions, self.TOP_USERS),
            )

    def get_top_users(self, start, end, count=TOP_USERS) -> List[TopUser]:
        start, end = self._range(start, end)
        with self.storage.unit_of_work() as uow:
            sessions = self._sessions_in_range(uow, start, end)
            return self._top_users(uow, sessions, count)
