import threading
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from cafe.computers import UsageStatus
from cafe.engine import db_engine
from cafe.engine.db_engine import UnitOfWork
from cafe.exceptions import (
    AlreadyActiveSession,
    ComputerNotAvailable,
    InsufficientBalance,
    InvalidDateRange,
    NoActiveSession,
    OperationTimeout,
    SessionNotActive,
    SessionNotFound,
    StorageError,
    UserNotFound,
)
from cafe.sessions import Session, SessionStatus
from cafe.transactions import TransactionType

from conftest import STAFF


def balance_of(ledger, user):
    return ledger.get_balance_by_user(user.id)


def usage_charges(ledger, user, session_id):
    account = ledger.get_account_by_user(user.id)
    return [
        t
        for t in ledger.get_transactions(account.id)
        if t.type == TransactionType.COMPUTER_USAGE and t.session_id == session_id
    ]


# --- starting ----------------------------------------------------------------


def test_start_session_marks_computer_in_use(engine, registry, alice, pc, clock, audit):
    session = engine.start_session(alice.id, pc.id, actor_id=STAFF)

    assert session.status == SessionStatus.ACTIVE
    assert session.start_time == clock.now
    assert session.end_time is None
    assert session.total_cost == Decimal("0.00")
    assert session.user_name == "alice"
    assert session.computer_name == "PC-01"
    computer = registry.get_computer(pc.id)
    assert computer.status == UsageStatus.IN_USE
    assert computer.last_used_date == clock.now
    assert audit.actions[-1] == "SessionStarted"
    assert engine.has_active_session(alice.id)


def test_start_session_requires_minimum_reservation(engine, registry, make_user, pc):
    poor = make_user("carol", balance=Decimal("1000"))

    with pytest.raises(InsufficientBalance) as excinfo:
        engine.start_session(poor.id, pc.id)

    assert excinfo.value.required_amount == Decimal("2500.00")
    assert excinfo.value.current_balance == Decimal("1000.00")
    assert registry.get_computer(pc.id).status == UsageStatus.AVAILABLE
    assert engine.get_sessions_by_user(poor.id) == []


def test_minimum_reservation_exactly_covered(engine, make_user, pc):
    user = make_user("dave", balance=Decimal("2500"))
    assert engine.start_session(user.id, pc.id).status == SessionStatus.ACTIVE


def test_minimum_reservation_rounds_up_to_the_cent(engine, registry, make_user, make_computer):
    cheap = make_computer("CHEAP-01", hourly_rate=Decimal("0.01"))
    broke = make_user("zero", balance=0)

    with pytest.raises(InsufficientBalance) as excinfo:
        engine.start_session(broke.id, cheap.id)

    assert excinfo.value.required_amount == Decimal("0.01")
    assert registry.get_computer(cheap.id).status == UsageStatus.AVAILABLE


def test_minimum_reservation_on_odd_rate(engine, make_user, make_computer):
    odd = make_computer("ODD-01", hourly_rate=Decimal("10000.97"))
    short = make_user("henry", balance=Decimal("2500.24"))
    enough = make_user("iris", balance=Decimal("2500.25"))

    with pytest.raises(InsufficientBalance) as excinfo:
        engine.start_session(short.id, odd.id)
    assert excinfo.value.required_amount == Decimal("2500.25")

    assert engine.start_session(enough.id, odd.id).status == SessionStatus.ACTIVE


def test_start_session_unknown_user(engine, pc):
    with pytest.raises(UserNotFound):
        engine.start_session("missing", pc.id)


def test_start_session_unknown_computer(engine, alice):
    with pytest.raises(ComputerNotAvailable):
        engine.start_session(alice.id, "missing")


def test_start_session_on_computer_in_maintenance(engine, registry, alice, pc):
    registry.set_maintenance(pc.id, "fan replacement")
    with pytest.raises(ComputerNotAvailable) as excinfo:
        engine.start_session(alice.id, pc.id)
    assert excinfo.value.status == UsageStatus.MAINTENANCE


def test_user_cannot_hold_two_sessions(engine, alice, pc, make_computer):
    engine.start_session(alice.id, pc.id)
    other = make_computer("PC-02")
    with pytest.raises(AlreadyActiveSession):
        engine.start_session(alice.id, other.id)


def test_second_user_cannot_take_busy_computer(engine, alice, pc, make_user):
    engine.start_session(alice.id, pc.id)
    bob = make_user("bob")
    with pytest.raises(ComputerNotAvailable):
        engine.start_session(bob.id, pc.id)


def test_stale_read_loses_the_race(engine, registry, alice, pc, make_user, monkeypatch):
    engine.start_session(alice.id, pc.id)
    bob = make_user("bob")

    # Bob's start reads the computer as it was before Alice took it.
    stale = SimpleNamespace(
        id=pc.id,
        name=pc.name,
        usage_status=UsageStatus.AVAILABLE,
        hourly_rate=pc.hourly_rate,
    )
    monkeypatch.setattr(UnitOfWork, "get_computer", lambda self, computer_id: stale)

    with pytest.raises(ComputerNotAvailable):
        engine.start_session(bob.id, pc.id)

    monkeypatch.undo()
    assert engine.get_active_session_by_computer(pc.id).user_id == alice.id
    assert engine.get_sessions_by_user(bob.id) == []
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE


def test_concurrent_starts_on_one_computer_have_one_winner(engine, registry, make_user, pc):
    players = [make_user(f"player{n}") for n in range(8)]
    barrier = threading.Barrier(len(players))
    started, refused = [], []

    def start(user):
        barrier.wait()
        try:
            started.append(engine.start_session(user.id, pc.id))
        except (ComputerNotAvailable, StorageError) as e:
            refused.append(e)

    threads = [threading.Thread(target=start, args=(user,)) for user in players]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(started) == 1
    assert len(refused) == len(players) - 1
    assert len(engine.get_active_sessions()) == 1
    assert engine.get_active_session_by_computer(pc.id).user_id == started[0].user_id
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE


def test_database_refuses_two_active_sessions_per_computer(storage, alice, pc, make_user, clock):
    bob = make_user("bob")
    with pytest.raises(StorageError):
        with storage.unit_of_work() as uow:
            for user in (alice, bob):
                uow.add(
                    Session(
                        user_id=user.id,
                        computer_id=pc.id,
                        start_time=clock.now,
                        status=SessionStatus.ACTIVE,
                    )
                )
            uow.flush()


# --- ending ------------------------------------------------------------------


def test_end_session_charges_the_cost(engine, registry, ledger, alice, pc, clock, audit):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=30)

    ended = engine.end_session(started.id, notes="thanks", actor_id=STAFF)

    assert ended.status == SessionStatus.COMPLETED
    assert ended.end_time == clock.now
    assert ended.duration == timedelta(minutes=30)
    assert ended.total_cost == Decimal("5000.00")
    assert ended.unpaid_amount == Decimal("0.00")
    assert ended.notes == "thanks"
    assert balance_of(ledger, alice) == Decimal("45000.00")
    assert registry.get_computer(pc.id).status == UsageStatus.AVAILABLE
    charges = usage_charges(ledger, alice, started.id)
    assert [c.amount for c in charges] == [Decimal("-5000.00")]
    assert charges[0].user_id == alice.id
    assert charges[0].description == f"Charge for session #{started.id}"
    assert audit.actions[-2:] == ["SessionCharge", "SessionEnded"]
    assert not engine.has_active_session(alice.id)


def test_partial_minutes_are_billed(engine, ledger, alice, pc, clock):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=61)
    assert engine.end_session(started.id).total_cost == Decimal("10166.67")
    assert balance_of(ledger, alice) == Decimal("39833.33")


def test_end_session_twice(engine, ledger, alice, pc, clock):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=30)
    engine.end_session(started.id)

    with pytest.raises(SessionNotActive):
        engine.end_session(started.id)
    with pytest.raises(SessionNotActive):
        engine.terminate_session(started.id, "late click")

    assert balance_of(ledger, alice) == Decimal("45000.00")
    assert len(usage_charges(ledger, alice, started.id)) == 1


def test_end_unknown_session(engine):
    with pytest.raises(SessionNotFound):
        engine.end_session("missing")


def test_end_session_without_funds_changes_nothing(engine, registry, ledger, alice, pc, clock, audit):
    started = engine.start_session(alice.id, pc.id)
    account = ledger.get_account_by_user(alice.id)
    ledger.withdraw(account.id, 49500)
    clock.advance(minutes=30)
    events = len(audit.events)

    with pytest.raises(InsufficientBalance):
        engine.end_session(started.id)

    session = engine.get_session(started.id)
    assert session.status == SessionStatus.ACTIVE
    assert session.end_time is None
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE
    assert balance_of(ledger, alice) == Decimal("500.00")
    assert usage_charges(ledger, alice, started.id) == []
    assert len(audit.events) == events


def test_end_session_on_free_computer_records_zero_charge(engine, ledger, alice, make_computer, clock):
    free = make_computer("FREE-01", hourly_rate=0)
    started = engine.start_session(alice.id, free.id)
    clock.advance(hours=3)

    ended = engine.end_session(started.id)

    assert ended.total_cost == Decimal("0.00")
    assert balance_of(ledger, alice) == Decimal("50000.00")
    assert [c.amount for c in usage_charges(ledger, alice, started.id)] == [Decimal("0.00")]


# --- terminating -------------------------------------------------------------


def test_terminate_session(engine, registry, ledger, alice, pc, clock, audit):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=5)

    terminated = engine.terminate_session(started.id, "hardware fault", actor_id=STAFF)

    assert terminated.status == SessionStatus.TERMINATED
    assert terminated.notes == "hardware fault"
    assert terminated.total_cost == Decimal("833.33")
    assert balance_of(ledger, alice) == Decimal("49166.67")
    assert registry.get_computer(pc.id).status == UsageStatus.AVAILABLE
    assert audit.actions[-1] == "SessionTerminated"
    assert "hardware fault" in audit.events[-1].details


def test_terminate_collects_what_is_left(engine, registry, ledger, alice, pc, clock, audit):
    started = engine.start_session(alice.id, pc.id)
    account = ledger.get_account_by_user(alice.id)
    ledger.withdraw(account.id, 49500)
    clock.advance(minutes=30)

    terminated = engine.terminate_session(started.id, "out of credit")

    assert terminated.status == SessionStatus.TERMINATED
    assert terminated.total_cost == Decimal("5000.00")
    assert terminated.unpaid_amount == Decimal("4500.00")
    assert balance_of(ledger, alice) == Decimal("0.00")
    assert [c.amount for c in usage_charges(ledger, alice, started.id)] == [Decimal("-500.00")]
    assert registry.get_computer(pc.id).status == UsageStatus.AVAILABLE
    assert "SessionChargeShortfall" in audit.actions
    assert audit.actions[-1] == "SessionTerminated"


def test_terminate_exhausted_sessions(engine, ledger, make_user, make_computer, clock):
    broke = make_user("erin", balance=Decimal("2500"))
    rich = make_user("frank")
    free_rider = make_user("gina", balance=Decimal("2500"))
    first, second, free = (
        make_computer("PC-01"),
        make_computer("PC-02"),
        make_computer("FREE-01", hourly_rate=0),
    )
    exhausted = engine.start_session(broke.id, first.id)
    engine.start_session(rich.id, second.id)
    engine.start_session(free_rider.id, free.id)
    clock.advance(minutes=15)

    terminated = engine.terminate_exhausted_sessions()

    assert [s.id for s in terminated] == [exhausted.id]
    assert terminated[0].notes == engine.EXHAUSTED_REASON
    assert terminated[0].unpaid_amount == Decimal("0.00")
    assert balance_of(ledger, broke) == Decimal("0.00")
    assert engine.has_active_session(rich.id)
    assert engine.has_active_session(free_rider.id)
    assert engine.terminate_exhausted_sessions() == []


# --- pricing -----------------------------------------------------------------


def test_remaining_time(engine, alice, pc, clock):
    engine.start_session(alice.id, pc.id)
    assert engine.get_remaining_time(alice.id, pc.id) == timedelta(hours=5)
    clock.advance(minutes=30)
    assert engine.get_remaining_time(alice.id, pc.id) == timedelta(hours=4, minutes=30)


def test_remaining_time_deducts_cost_so_far(engine, make_user, pc, clock):
    player = make_user("jack", balance=Decimal("10000"))
    engine.start_session(player.id, pc.id)
    clock.advance(minutes=15)
    assert engine.get_remaining_time(player.id, pc.id) == timedelta(minutes=45)


def test_remaining_time_never_negative(engine, ledger, alice, pc, clock):
    engine.start_session(alice.id, pc.id)
    clock.advance(hours=6)
    assert engine.get_remaining_time(alice.id, pc.id) == timedelta(0)


def test_remaining_time_on_free_computer(engine, alice, make_computer):
    free = make_computer("FREE-01", hourly_rate=0)
    engine.start_session(alice.id, free.id)
    assert engine.get_remaining_time(alice.id, free.id) == engine.UNLIMITED


def test_remaining_time_needs_a_session_on_that_computer(engine, alice, pc, make_computer):
    with pytest.raises(NoActiveSession):
        engine.get_remaining_time(alice.id, pc.id)
    engine.start_session(alice.id, pc.id)
    other = make_computer("PC-02")
    with pytest.raises(NoActiveSession):
        engine.get_remaining_time(alice.id, other.id)


def test_calculate_session_cost(engine, alice, pc, clock):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=61)
    assert engine.calculate_session_cost(started.id) == Decimal("10166.67")
    clock.advance(minutes=4)
    engine.end_session(started.id)
    clock.advance(hours=2)
    assert engine.calculate_session_cost(started.id) == Decimal("10833.33")


def test_session_details(engine, alice, pc, clock):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=30)
    details = engine.get_session_details(started.id)
    assert details.hourly_rate == Decimal("10000.00")
    assert details.current_cost == Decimal("5000.00")
    assert details.transactions == []

    engine.end_session(started.id)
    details = engine.get_session_details(started.id)
    assert details.current_cost == Decimal("5000.00")
    assert [t.amount for t in details.transactions] == [Decimal("-5000.00")]


# --- queries -----------------------------------------------------------------


def test_session_queries(engine, alice, pc, make_user, make_computer, clock):
    first = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=10)
    engine.end_session(first.id)
    clock.advance(days=1)
    second = engine.start_session(alice.id, pc.id)
    bob = make_user("bob")
    engine.start_session(bob.id, make_computer("PC-02").id)

    assert [s.id for s in engine.get_sessions_by_user(alice.id)] == [second.id, first.id]
    assert len(engine.get_active_sessions()) == 2
    assert engine.get_active_session_by_computer(pc.id).id == second.id

    day_one = first.start_time.date()
    assert [s.id for s in engine.get_sessions_by_date_range(day_one, day_one)] == [first.id]
    with pytest.raises(InvalidDateRange):
        engine.get_sessions_by_date_range(clock.now, first.start_time)


# --- deadlines ---------------------------------------------------------------


def test_expired_deadline_rolls_everything_back(engine, registry, ledger, alice, pc, clock, monkeypatch):
    started = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=30)

    ticks = {"now": 0.0}
    monkeypatch.setattr(db_engine, "time", SimpleNamespace(monotonic=lambda: ticks["now"]))
    release = registry.release

    def slow_release(*args, **kwargs):
        ticks["now"] += 60
        return release(*args, **kwargs)

    monkeypatch.setattr(registry, "release", slow_release)

    with pytest.raises(OperationTimeout):
        engine.end_session(started.id, timeout=5)

    monkeypatch.undo()
    assert engine.get_session(started.id).status == SessionStatus.ACTIVE
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE
    assert balance_of(ledger, alice) == Decimal("50000.00")


def test_zero_deadline_start_leaves_no_trace(engine, registry, alice, pc):
    with pytest.raises(OperationTimeout):
        engine.start_session(alice.id, pc.id, timeout=-1)
    assert registry.get_computer(pc.id).status == UsageStatus.AVAILABLE
    assert not engine.has_active_session(alice.id)
