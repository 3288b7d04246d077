"""
The session engine: starting, closing and pricing computer sessions.

A session goes `Active -> Completed` (ended normally) or `Active -> Terminated`
(stopped by staff or by the exhausted-balance sweep). Both are terminal.

Starting and closing each run in one unit of work. Closing applies three changes
together: the session row is closed, the computer is released and the account
is charged. Either all three commit or none does.

Cost of a session: round(ceil(minutes) / 60 * hourly_rate, 2). Partial minutes
are always billed (see `Utilities.calculate_cost`).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_CEILING, Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from cafe.computers import UsageStatus
from cafe.exceptions import (
    AccountNotFound,
    AlreadyActiveSession,
    ComputerNotAvailable,
    ComputerNotFound,
    InsufficientBalance,
    InvalidDateRange,
    NoActiveSession,
    SessionNotActive,
    SessionNotFound,
    UserNotFound,
)
from cafe.misc import CENT, Utilities
from cafe.services.ledger import LedgerService, TransactionView
from cafe.sessions import Session, SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class SessionView:
    id: str
    user_id: str
    user_name: str
    computer_id: str
    computer_name: str
    start_time: datetime
    end_time: Optional[datetime]
    duration: timedelta
    total_cost: Decimal
    unpaid_amount: Decimal
    status: str
    notes: Optional[str]

    @classmethod
    def from_model(cls, session):
        return cls(
            id=session.id,
            user_id=session.user_id,
            user_name=session.user.username if session.user else "Unknown",
            computer_id=session.computer_id,
            computer_name=session.computer.name if session.computer else "Unknown",
            start_time=session.start_time,
            end_time=session.end_time,
            duration=session.duration,
            total_cost=session.total_cost,
            unpaid_amount=session.unpaid_amount,
            status=session.status,
            notes=session.notes,
        )


@dataclass
class SessionDetails:
    session: SessionView
    hourly_rate: Decimal
    current_cost: Decimal
    transactions: List[TransactionView] = field(default_factory=list)


class SessionEngine:
    """Session lifecycle on top of the computer registry and the ledger."""

    # A session may only start when the balance covers this much play time.
    MINIMUM_RESERVATION_MINUTES = 15
    # Remaining time reported for free computers.
    UNLIMITED = timedelta(days=365)
    EXHAUSTED_REASON = "balance exhausted"

    def __init__(self, storage, registry, ledger: LedgerService, audit, clock=Utilities.utcnow):
        self.storage = storage
        self.registry = registry
        self.ledger = ledger
        self.audit = audit
        self.clock = clock

    @classmethod
    def minimum_reservation(cls, hourly_rate) -> Decimal:
        """Balance needed to start: a quarter hour at `hourly_rate`, rounded up to the cent."""
        quarter = Decimal(str(hourly_rate)) * cls.MINIMUM_RESERVATION_MINUTES / 60
        return quarter.quantize(CENT, rounding=ROUND_CEILING)

    @staticmethod
    def _load(uow, session_id):
        session = uow.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _live_cost(self, session, computer, now=None):
        if not session.is_active:
            return session.total_cost
        return Utilities.calculate_cost(
            (now or self.clock()) - session.start_time, computer.hourly_rate
        )

    # --- start --------------------------------------------------------------

    def start_session(self, user_id, computer_id, actor_id=None, timeout=None) -> SessionView:
        """
        Open a session for a user on an Available computer.

        :raises UserNotFound: no such user.
        :raises AlreadyActiveSession: the user is already playing somewhere.
        :raises ComputerNotAvailable: the computer is missing, in use or in
            maintenance, or another start won the race for it.
        :raises AccountNotFound: the user has no account.
        :raises InsufficientBalance: the balance is below the minimum reservation.
        """
        with self.storage.unit_of_work(timeout) as uow:
            user = uow.get_user(user_id)
            if user is None:
                raise UserNotFound(user_id)
            if uow.find_active_session_for_user(user_id) is not None:
                logger.warning("User %s already has an active session", user_id)
                raise AlreadyActiveSession(user_id)

            computer = uow.get_computer(computer_id)
            if computer is None:
                raise ComputerNotAvailable(computer_id)
            if computer.usage_status != UsageStatus.AVAILABLE:
                raise ComputerNotAvailable(computer_id, computer.usage_status)

            account = uow.get_account_by_user(user_id)
            if account is None:
                raise AccountNotFound(user_id=user_id)
            required = self.minimum_reservation(computer.hourly_rate)
            if account.balance < required:
                logger.warning(
                    "User %s cannot start on %s: balance %s, required %s",
                    user_id,
                    computer.name,
                    account.balance,
                    required,
                )
                raise InsufficientBalance(account.balance, required)

            now = self.clock()
            if not self.registry.reserve(uow, computer.id, actor_id, now):
                logger.warning("Lost the race for computer %s", computer_id)
                raise ComputerNotAvailable(computer_id)

            session = Session(
                user_id=user_id,
                computer_id=computer.id,
                start_time=now,
                status=SessionStatus.ACTIVE,
            )
            uow.add(session, actor_id, now)
            try:
                uow.flush()
            except IntegrityError as e:
                # The partial unique indexes caught a concurrent start.
                if "computer_id" in str(e.orig):
                    raise ComputerNotAvailable(computer_id) from e
                raise AlreadyActiveSession(user_id) from e

            uow.on_commit(
                self.audit.log_activity,
                "SessionStarted",
                "Session",
                session.id,
                actor_id or user_id,
                now,
                f"Session started for user {user_id} on computer {computer_id}",
            )
            logger.info("Session %s started: %s on %s", session.id, user.username, computer.name)
            return SessionView.from_model(session)

    # --- close --------------------------------------------------------------

    def end_session(self, session_id, notes=None, actor_id=None, timeout=None) -> SessionView:
        """
        Close an Active session normally and charge its full cost.

        :raises SessionNotFound: no such session.
        :raises SessionNotActive: the session is already closed.
        :raises InsufficientBalance: the balance no longer covers the cost. The
            session stays Active and nothing is changed.
        """
        return self._close(
            session_id,
            SessionStatus.COMPLETED,
            notes,
            "SessionEnded",
            actor_id,
            timeout,
            allow_shortfall=False,
        )

    def terminate_session(self, session_id, reason=None, actor_id=None, timeout=None) -> SessionView:
        """
        Force an Active session closed.

        Termination always succeeds for an Active session. If the balance
        cannot cover the cost, whatever is there is collected and the rest is
        recorded on the session as `unpaid_amount`.

        :raises SessionNotFound: no such session.
        :raises SessionNotActive: the session is already closed.
        """
        return self._close(
            session_id,
            SessionStatus.TERMINATED,
            reason,
            "SessionTerminated",
            actor_id,
            timeout,
            allow_shortfall=True,
        )

    def _close(self, session_id, status, notes, action, actor_id, timeout, allow_shortfall):
        with self.storage.unit_of_work(timeout) as uow:
            session = self._load(uow, session_id)
            if not session.is_active:
                raise SessionNotActive(session_id, session.status)

            computer = uow.get_computer(session.computer_id)
            if computer is None:
                raise ComputerNotFound(session.computer_id)
            account = uow.get_account_by_user(session.user_id)
            if account is None:
                raise AccountNotFound(user_id=session.user_id)

            now = self.clock()
            elapsed = max(now - session.start_time, timedelta(0))
            cost = Utilities.calculate_cost(elapsed, computer.hourly_rate)

            closed = uow.close_session(
                session.id,
                status,
                actor_id,
                now,
                end_time=now,
                duration_seconds=int(elapsed.total_seconds()),
                total_cost=cost,
                notes=notes,
            )
            if not closed:
                uow.refresh(session)
                raise SessionNotActive(session_id, session.status)

            self.registry.release(uow, computer.id, actor_id, now)
            charge = self.ledger.charge_for_session(
                account.id,
                session.id,
                cost,
                actor_id=actor_id,
                uow=uow,
                allow_partial=allow_shortfall,
            )

            unpaid = (cost + charge.amount).quantize(CENT)
            if unpaid > 0:
                session = uow.refresh(session)
                session.unpaid_amount = unpaid
                uow.add(session, actor_id, now)
                uow.flush()
                logger.warning(
                    "Session %s closed with %s unpaid of %s", session.id, unpaid, cost
                )
                uow.on_commit(
                    self.audit.log_activity,
                    "SessionChargeShortfall",
                    "Session",
                    session.id,
                    actor_id,
                    now,
                    f"Collected {-charge.amount} of {cost}, unpaid {unpaid}",
                )

            uow.on_commit(
                self.audit.log_activity,
                action,
                "Session",
                session.id,
                actor_id or session.user_id,
                now,
                f"Session {status.lower()} after {Utilities.billable_minutes(elapsed)} "
                f"minutes, cost {cost}" + (f": {notes}" if notes else ""),
            )
            logger.info("Session %s %s, cost %s", session.id, status, cost)
            return SessionView.from_model(uow.refresh(session))

    def terminate_exhausted_sessions(self, actor_id=None) -> List[SessionView]:
        """
        Terminate every Active session whose running cost has caught up with
        its owner's balance. Free computers never run out.
        """
        now = self.clock()
        with self.storage.unit_of_work() as uow:
            exhausted = []
            for session in uow.scalars(
                uow.query(Session).where(Session.status == SessionStatus.ACTIVE)
            ):
                computer = uow.get_computer(session.computer_id)
                account = uow.get_account_by_user(session.user_id)
                if computer is None or account is None or computer.hourly_rate <= 0:
                    continue
                if self._live_cost(session, computer, now) >= account.balance:
                    exhausted.append(session.id)

        terminated = []
        for session_id in exhausted:
            try:
                terminated.append(
                    self.terminate_session(session_id, self.EXHAUSTED_REASON, actor_id)
                )
            except SessionNotActive:
                logger.info("Session %s was closed before the sweep reached it", session_id)
        if terminated:
            logger.info("Terminated %d exhausted sessions", len(terminated))
        return terminated

    # --- pricing ------------------------------------------------------------

    def get_remaining_time(self, user_id, computer_id) -> timedelta:
        """
        Play time the user's balance still buys on the computer, once the cost
        accrued so far is taken out. Never negative.

        This is `(balance - live cost) / rate` rather than `balance / rate`: the
        charge for the running session has not been debited yet.

        :raises NoActiveSession: the user has no Active session on the computer.
        """
        with self.storage.unit_of_work() as uow:
            session = uow.find_active_session_for_user(user_id)
            if session is None or session.computer_id != computer_id:
                raise NoActiveSession(user_id, computer_id)
            computer = uow.get_computer(computer_id)
            if computer is None:
                raise ComputerNotFound(computer_id)
            if computer.hourly_rate <= 0:
                return self.UNLIMITED
            account = uow.get_account_by_user(user_id)
            if account is None:
                raise AccountNotFound(user_id=user_id)

            left = account.balance - self._live_cost(session, computer)
            if left <= 0:
                return timedelta(0)
            seconds = left * 3600 / computer.hourly_rate
            return timedelta(seconds=int(seconds))

    def calculate_session_cost(self, session_id) -> Decimal:
        """Stored cost of a closed session, or the live cost of an Active one."""
        with self.storage.unit_of_work() as uow:
            session = self._load(uow, session_id)
            if not session.is_active:
                return session.total_cost
            computer = uow.get_computer(session.computer_id)
            if computer is None:
                raise ComputerNotFound(session.computer_id)
            return self._live_cost(session, computer)

    # --- queries ------------------------------------------------------------

    def get_session(self, session_id) -> SessionView:
        with self.storage.unit_of_work() as uow:
            return SessionView.from_model(self._load(uow, session_id))

    def get_session_details(self, session_id) -> SessionDetails:
        with self.storage.unit_of_work() as uow:
            session = self._load(uow, session_id)
            computer = session.computer
            rate = computer.hourly_rate if computer else Decimal("0.00")
            return SessionDetails(
                session=SessionView.from_model(session),
                hourly_rate=rate,
                current_cost=self._live_cost(session, computer) if computer else session.total_cost,
                transactions=[
                    TransactionView.from_model(t, session.user.username)
                    for t in uow.transactions_for_session(session.id)
                ],
            )

    def get_active_session_by_computer(self, computer_id) -> Optional[SessionView]:
        with self.storage.unit_of_work() as uow:
            session = uow.find_active_session_for_computer(computer_id)
            return SessionView.from_model(session) if session else None

    def get_active_sessions(self) -> List[SessionView]:
        with self.storage.unit_of_work() as uow:
            return [
                SessionView.from_model(s)
                for s in uow.scalars(
                    uow.query(Session)
                    .where(Session.status == SessionStatus.ACTIVE)
                    .order_by(Session.start_time)
                )
            ]

    def get_sessions_by_user(self, user_id) -> List[SessionView]:
        with self.storage.unit_of_work() as uow:
            return [
                SessionView.from_model(s)
                for s in uow.scalars(
                    uow.query(Session)
                    .where(Session.user_id == user_id)
                    .order_by(Session.start_time.desc())
                )
            ]

    def get_sessions_by_date_range(self, start, end) -> List[SessionView]:
        """Sessions that started within [start, end]. Dates cover whole days."""
        start = Utilities.as_datetime(start)
        end = Utilities.as_datetime(end, end_of_day=True)
        if start > end:
            raise InvalidDateRange(start, end)
        with self.storage.unit_of_work() as uow:
            return [
                SessionView.from_model(s)
                for s in uow.scalars(
                    uow.query(Session)
                    .where(Session.start_time >= start, Session.start_time <= end)
                    .order_by(Session.start_time)
                )
            ]

    def has_active_session(self, user_id) -> bool:
        with self.storage.unit_of_work() as uow:
            return uow.find_active_session_for_user(user_id) is not None
