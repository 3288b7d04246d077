from decimal import Decimal

import pytest

from cafe.computers import UsageStatus
from cafe.exceptions import (
    ComputerInUse,
    ComputerNotFound,
    ConflictActiveSession,
    DuplicateComputer,
    InvalidAmount,
    InvalidArgument,
    InvalidStatus,
)

from conftest import STAFF


def test_register_computer(registry, audit, clock):
    computer = registry.register_computer(
        "PC-01", "10.0.0.1", "15000", specifications="RTX 4070", location="Row A", actor_id=STAFF
    )
    assert computer.status == UsageStatus.AVAILABLE
    assert computer.hourly_rate == Decimal("15000.00")
    assert computer.location == "Row A"
    assert registry.get_computer(computer.id) == computer
    assert audit.events[-1].action == "ComputerRegistered"
    assert audit.events[-1].timestamp == clock.now


def test_register_rejects_duplicates(registry, pc):
    with pytest.raises(DuplicateComputer) as excinfo:
        registry.register_computer("PC-01", "10.0.0.99", 10000)
    assert excinfo.value.field_name == "name"
    with pytest.raises(DuplicateComputer) as excinfo:
        registry.register_computer("PC-99", pc.ip_address, 10000)
    assert excinfo.value.field_name == "IP address"


@pytest.mark.parametrize("rate", [-1, "cheap"])
def test_register_rejects_bad_rates(registry, rate):
    with pytest.raises(InvalidAmount):
        registry.register_computer("PC-01", "10.0.0.1", rate)
    assert registry.list_computers() == []


def test_list_computers_by_name_and_status(registry, make_computer):
    make_computer("PC-03")
    make_computer("PC-01")
    second = make_computer("PC-02")
    registry.set_maintenance(second.id)

    assert [c.name for c in registry.list_computers()] == ["PC-01", "PC-02", "PC-03"]
    assert [c.name for c in registry.get_available_computers()] == ["PC-01", "PC-03"]
    assert [c.name for c in registry.get_computers_by_status(UsageStatus.MAINTENANCE)] == ["PC-02"]
    with pytest.raises(InvalidStatus):
        registry.get_computers_by_status("Broken")


def test_maintenance_round_trip(registry, pc, clock, audit):
    clock.advance(hours=1)
    view = registry.set_maintenance(pc.id, "dusting", actor_id=STAFF)
    assert view.status == UsageStatus.MAINTENANCE
    assert view.last_maintenance_date == clock.now
    assert not registry.is_available(pc.id)
    assert audit.events[-1].details == "Available -> Maintenance"

    view = registry.update_status(pc.id, UsageStatus.AVAILABLE)
    assert view.status == UsageStatus.AVAILABLE
    assert registry.is_available(pc.id)


def test_update_status_to_same_status_is_a_no_op(registry, pc, audit):
    events = len(audit.events)
    assert registry.update_status(pc.id, UsageStatus.AVAILABLE).status == UsageStatus.AVAILABLE
    assert len(audit.events) == events


def test_in_use_stamps_last_used_date(registry, pc, clock):
    clock.advance(minutes=5)
    view = registry.update_status(pc.id, UsageStatus.IN_USE)
    assert view.last_used_date == clock.now
    assert registry.update_status(pc.id, UsageStatus.AVAILABLE).status == UsageStatus.AVAILABLE


def test_maintenance_cannot_go_straight_to_in_use(registry, pc):
    registry.set_maintenance(pc.id)
    with pytest.raises(InvalidStatus):
        registry.update_status(pc.id, UsageStatus.IN_USE)


def test_update_status_rejects_unknown_status(registry, pc):
    with pytest.raises(InvalidStatus):
        registry.update_status(pc.id, "Broken")


def test_update_status_of_unknown_computer(registry):
    with pytest.raises(ComputerNotFound):
        registry.update_status("missing", UsageStatus.MAINTENANCE)


def test_computer_with_active_session_cannot_change_status(registry, engine, alice, pc):
    engine.start_session(alice.id, pc.id)

    with pytest.raises(ComputerInUse):
        registry.set_maintenance(pc.id, "urgent")
    with pytest.raises(ConflictActiveSession):
        registry.update_status(pc.id, UsageStatus.AVAILABLE)
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE


def test_update_computer(registry, pc, make_computer):
    view = registry.update_computer(pc.id, hourly_rate="12000", location="Row B")
    assert view.hourly_rate == Decimal("12000.00")
    assert view.location == "Row B"

    other = make_computer("PC-02")
    with pytest.raises(DuplicateComputer):
        registry.update_computer(other.id, name="PC-01")
    with pytest.raises(InvalidArgument):
        registry.update_computer(pc.id, usage_status=UsageStatus.IN_USE)


def test_remove_computer(registry, pc):
    registry.remove_computer(pc.id, actor_id=STAFF)

    assert registry.list_computers() == []
    with pytest.raises(ComputerNotFound):
        registry.get_computer(pc.id)
    with pytest.raises(ComputerNotFound):
        registry.remove_computer(pc.id)
    with pytest.raises(DuplicateComputer):
        registry.register_computer("PC-01", "10.0.0.200", 10000)


def test_remove_computer_in_use(registry, engine, alice, pc):
    engine.start_session(alice.id, pc.id)
    with pytest.raises(ComputerInUse):
        registry.remove_computer(pc.id)
    assert registry.get_computer(pc.id).status == UsageStatus.IN_USE


def test_remove_computer_marked_in_use_without_a_session(registry, pc, audit):
    registry.update_status(pc.id, UsageStatus.IN_USE, actor_id=STAFF)

    registry.remove_computer(pc.id, actor_id=STAFF)

    assert registry.list_computers() == []
    assert audit.actions[-1] == "ComputerRemoved"
