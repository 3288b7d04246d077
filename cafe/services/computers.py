"""
Computer inventory and the usage state machine.

    Available -> InUse        (a session starts; `reserve`)
    InUse -> Available        (the session closes; `release`)
    Available <-> Maintenance (staff)

Every transition is a compare-and-swap on the stored status, so two callers
racing for the same Available computer cannot both win.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import exists, or_, select

from cafe.baseModel import Lifecycle
from cafe.computers import Computer, UsageStatus
from cafe.exceptions import (
    ComputerInUse,
    ComputerNotAvailable,
    ComputerNotFound,
    DuplicateComputer,
    InvalidAmount,
    InvalidArgument,
    InvalidStatus,
)
from cafe.misc import Utilities
from cafe.sessions import Session, SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class ComputerView:
    id: str
    name: str
    ip_address: str
    specifications: str
    location: str
    hourly_rate: Decimal
    status: str
    last_used_date: Optional[datetime]
    last_maintenance_date: Optional[datetime]

    @classmethod
    def from_model(cls, computer):
        return cls(
            id=computer.id,
            name=computer.name,
            ip_address=computer.ip_address,
            specifications=computer.specifications or "",
            location=computer.location or "",
            hourly_rate=computer.hourly_rate,
            status=computer.usage_status,
            last_used_date=computer.last_used_date,
            last_maintenance_date=computer.last_maintenance_date,
        )


class ComputerRegistry:
    """Registering, listing and moving computers between usage states."""

    def __init__(self, storage, audit, clock=Utilities.utcnow):
        self.storage = storage
        self.audit = audit
        self.clock = clock

    @staticmethod
    def _rate(value):
        try:
            rate = Utilities.to_money(value)
        except ValueError:
            raise InvalidAmount(value, f"Invalid hourly rate: {value!r}.")
        if rate < 0:
            raise InvalidAmount(value, f"Hourly rate must not be negative, got {value}.")
        return rate

    @staticmethod
    def _load(uow, computer_id):
        computer = uow.get_computer(computer_id)
        if computer is None:
            raise ComputerNotFound(computer_id)
        return computer

    @staticmethod
    def _check_unique(uow, name, ip_address, exclude_id=None):
        # Removed computers keep their name and address reserved.
        statement = select(Computer).where(
            or_(Computer.name == name, Computer.ip_address == ip_address)
        )
        if exclude_id is not None:
            statement = statement.where(Computer.id != exclude_id)
        clash = uow.first(statement)
        if clash is None:
            return
        if clash.name == name:
            raise DuplicateComputer("name", name)
        raise DuplicateComputer("IP address", ip_address)

    # --- inventory ----------------------------------------------------------

    def register_computer(
        self,
        name,
        ip_address,
        hourly_rate,
        specifications="",
        location="",
        actor_id=None,
        timeout=None,
    ) -> ComputerView:
        """
        Add a computer to the inventory. New computers start Available.

        :raises InvalidAmount: negative or malformed hourly rate.
        :raises DuplicateComputer: the name or IP address is already taken.
        """
        rate = self._rate(hourly_rate)
        with self.storage.unit_of_work(timeout) as uow:
            self._check_unique(uow, name, ip_address)
            now = self.clock()
            computer = Computer(
                name=name,
                ip_address=ip_address,
                hourly_rate=rate,
                specifications=specifications or "",
                location=location or "",
                usage_status=UsageStatus.AVAILABLE,
            )
            uow.add(computer, actor_id, now)
            uow.flush()
            uow.on_commit(
                self.audit.log_activity,
                "ComputerRegistered",
                "Computer",
                computer.id,
                actor_id,
                now,
                f"Computer {name} registered at {ip_address}",
            )
            logger.info("Registered computer %s (%s)", name, computer.id)
            return ComputerView.from_model(computer)

    def update_computer(
        self, computer_id, actor_id=None, timeout=None, **changes
    ) -> ComputerView:
        """
        Change the descriptive fields of a computer: name, ip_address,
        specifications, location and hourly_rate. The usage status is only
        changed through `update_status`.
        """
        allowed = {"name", "ip_address", "specifications", "location", "hourly_rate"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidArgument(f"Unknown computer fields: {', '.join(sorted(unknown))}")
        if "hourly_rate" in changes:
            changes["hourly_rate"] = self._rate(changes["hourly_rate"])

        with self.storage.unit_of_work(timeout) as uow:
            computer = self._load(uow, computer_id)
            if "name" in changes or "ip_address" in changes:
                self._check_unique(
                    uow,
                    changes.get("name", computer.name),
                    changes.get("ip_address", computer.ip_address),
                    exclude_id=computer.id,
                )
            now = self.clock()
            for key, value in changes.items():
                setattr(computer, key, value)
            uow.add(computer, actor_id, now)
            uow.flush()
            uow.on_commit(
                self.audit.log_activity,
                "ComputerUpdated",
                "Computer",
                computer.id,
                actor_id,
                now,
                f"Updated fields: {', '.join(sorted(changes))}",
            )
            return ComputerView.from_model(computer)

    def remove_computer(self, computer_id, actor_id=None, timeout=None):
        """
        Take a computer out of the inventory. Its history is kept.

        :raises ComputerNotFound: no such computer.
        :raises ComputerInUse: an Active session is running on the computer.
        """
        with self.storage.unit_of_work(timeout) as uow:
            computer = self._load(uow, computer_id)
            if uow.find_active_session_for_computer(computer.id) is not None:
                raise ComputerInUse(computer_id)
            now = self.clock()
            running = exists().where(
                Session.computer_id == Computer.id,
                Session.status == SessionStatus.ACTIVE,
                Session.lifecycle == Lifecycle.ACTIVE,
            )
            removed = uow.soft_delete(
                Computer,
                computer.id,
                ~running,
                actor_id=actor_id,
                now=now,
            )
            if not removed:
                raise ComputerInUse(computer_id)
            uow.on_commit(
                self.audit.log_activity,
                "ComputerRemoved",
                "Computer",
                computer_id,
                actor_id,
                now,
                None,
            )
            logger.info("Removed computer %s", computer_id)

    # --- queries ------------------------------------------------------------

    def get_computer(self, computer_id) -> ComputerView:
        with self.storage.unit_of_work() as uow:
            return ComputerView.from_model(self._load(uow, computer_id))

    def list_computers(self) -> List[ComputerView]:
        with self.storage.unit_of_work() as uow:
            return [
                ComputerView.from_model(c)
                for c in uow.scalars(uow.query(Computer).order_by(Computer.name))
            ]

    def get_computers_by_status(self, status) -> List[ComputerView]:
        if status not in UsageStatus.ALL:
            raise InvalidStatus(status, UsageStatus.ALL)
        with self.storage.unit_of_work() as uow:
            return [
                ComputerView.from_model(c)
                for c in uow.scalars(
                    uow.query(Computer)
                    .where(Computer.usage_status == status)
                    .order_by(Computer.name)
                )
            ]

    def get_available_computers(self) -> List[ComputerView]:
        return self.get_computers_by_status(UsageStatus.AVAILABLE)

    def is_available(self, computer_id) -> bool:
        with self.storage.unit_of_work() as uow:
            computer = uow.get_computer(computer_id)
            return computer is not None and computer.usage_status == UsageStatus.AVAILABLE

    # --- state machine ------------------------------------------------------

    def update_status(
        self, computer_id, status, actor_id=None, timeout=None
    ) -> ComputerView:
        """
        Move a computer to another usage status on behalf of staff.

        InUse is entered and left by sessions only, so a computer that still
        has an Active session can neither be freed nor sent to maintenance.

        :raises InvalidStatus: unknown status, or a transition the state
            machine does not allow.
        :raises ComputerNotFound: no such computer.
        :raises ComputerInUse: an Active session is running on the computer.
        :raises ComputerNotAvailable: the status changed under us.
        """
        if status not in UsageStatus.ALL:
            raise InvalidStatus(status, UsageStatus.ALL)

        with self.storage.unit_of_work(timeout) as uow:
            computer = self._load(uow, computer_id)
            current = computer.usage_status
            if current == status:
                return ComputerView.from_model(computer)
            if uow.find_active_session_for_computer(computer.id) is not None:
                raise ComputerInUse(computer_id)
            if status not in UsageStatus.TRANSITIONS[current]:
                raise InvalidStatus(status, UsageStatus.TRANSITIONS[current])

            now = self.clock()
            if not uow.compare_and_set_usage_status(
                computer.id, current, status, actor_id, now
            ):
                raise ComputerNotAvailable(computer_id)
            uow.on_commit(
                self.audit.log_activity,
                "ComputerStatusChanged",
                "Computer",
                computer.id,
                actor_id,
                now,
                f"{current} -> {status}",
            )
            logger.info("Computer %s: %s -> %s", computer.name, current, status)
            return ComputerView.from_model(uow.refresh(computer))

    def set_maintenance(self, computer_id, reason=None, actor_id=None, timeout=None):
        view = self.update_status(
            computer_id, UsageStatus.MAINTENANCE, actor_id=actor_id, timeout=timeout
        )
        if reason:
            logger.info("Computer %s in maintenance: %s", view.name, reason)
        return view

    def reserve(self, uow, computer_id, actor_id=None, now=None) -> bool:
        """Available -> InUse inside the caller's unit. False when someone else won."""
        return uow.compare_and_set_usage_status(
            computer_id, UsageStatus.AVAILABLE, UsageStatus.IN_USE, actor_id, now
        )

    def release(self, uow, computer_id, actor_id=None, now=None) -> bool:
        """InUse -> Available inside the caller's unit."""
        released = uow.compare_and_set_usage_status(
            computer_id, UsageStatus.IN_USE, UsageStatus.AVAILABLE, actor_id, now
        )
        if not released:
            logger.warning("Computer %s was not InUse when released", computer_id)
        return released
