import os

# Importing `cafe` opens the configured database and log file; point both at
# throwaway targets before anything from the package is imported.
os.environ.setdefault("CAFE_DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE", os.devnull)

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from cafe.engine.db_engine import DBStorage
from cafe.services.audit import AuditLogger
from cafe.services.computers import ComputerRegistry
from cafe.services.ledger import LedgerService
from cafe.services.session_engine import SessionEngine
from cafe.services.statistics import StatisticsReader
from cafe.services.users import UserService

STAFF = "staff-1"


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, now=datetime(2024, 5, 1, 10, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingAuditLogger(AuditLogger):
    def __init__(self):
        self.events = []

    def write(self, event):
        self.events.append(event)

    @property
    def actions(self):
        return [event.action for event in self.events]


@pytest.fixture
def storage(tmp_path):
    db = DBStorage(f"sqlite:///{tmp_path / 'cafe-test.db'}")
    db.reload()
    yield db
    db.close()
    db.engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit():
    return RecordingAuditLogger()


@pytest.fixture
def ledger(storage, audit, clock):
    return LedgerService(storage, audit, clock)


@pytest.fixture
def registry(storage, audit, clock):
    return ComputerRegistry(storage, audit, clock)


@pytest.fixture
def engine(storage, registry, ledger, audit, clock):
    return SessionEngine(storage, registry, ledger, audit, clock)


@pytest.fixture
def statistics(storage, clock):
    return StatisticsReader(storage, clock)


@pytest.fixture
def users(storage, ledger, audit, clock):
    return UserService(storage, ledger, audit, clock)


@pytest.fixture
def make_user(users, ledger):
    """Register a customer and top their account up with `balance`."""

    def make(username, balance=Decimal("50000")):
        user = users.register_user(username, f"{username}@example.com", actor_id=STAFF)
        if balance:
            account = ledger.get_account_by_user(user.id)
            ledger.deposit(account.id, balance, actor_id=STAFF)
        return user

    return make


@pytest.fixture
def make_computer(registry):
    counter = iter(range(1, 1000))

    def make(name=None, hourly_rate=Decimal("10000")):
        n = next(counter)
        return registry.register_computer(
            name or f"PC-{n:02d}", f"10.0.0.{n}", hourly_rate, actor_id=STAFF
        )

    return make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def pc(make_computer):
    return make_computer("PC-01")
