"""
This module contains the core database storage engine for the application.

`DBStorage` owns the SQLAlchemy engine. It offers two ways in:

- Read helpers on a scoped session (`all`, `get`, `count`, `query_object`),
  used by the bot for quick look-ups. They only ever see rows whose lifecycle
  is Active.
- `unit_of_work()`, a context manager that opens a fresh session and yields a
  `UnitOfWork`. Everything done through it is committed together when the block
  exits cleanly and rolled back when anything raises, so no entity is ever left
  half-updated. Every service operation runs inside exactly one unit.

`UnitOfWork` is the transactional repository the services talk to. Besides
plain look-ups it exposes the compare-and-swap primitives that carry the
concurrency guarantees: a computer's usage status, a session's Active status
and an account's balance are only ever changed by a single conditional UPDATE
whose row count tells whether this caller won.

Example usage:
    storage = DBStorage("sqlite:///cafe-database.db")
    storage.reload()  # Creates the tables and the scoped session
    with storage.unit_of_work(timeout=5) as uow:
        computer = uow.get_computer(computer_id)
        won = uow.compare_and_set_usage_status(
            computer.id, UsageStatus.AVAILABLE, UsageStatus.IN_USE
        )
"""

import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker

from cafe.accounts import Account
from cafe.baseModel import Base, Lifecycle
from cafe.computers import Computer, UsageStatus
from cafe.exceptions import OperationTimeout, StorageError
from cafe.misc import Utilities
from cafe.sessions import Session, SessionStatus
from cafe.telegram_users import TelegramUser
from cafe.transactions import Transaction
from cafe.users import User

logger = logging.getLogger(__name__)

classes = {
    "User": User,
    "Account": Account,
    "Computer": Computer,
    "Session": Session,
    "Transaction": Transaction,
    "TelegramUser": TelegramUser,
}


def _resolve(cls):
    target_class = classes.get(cls) if isinstance(cls, str) else cls
    if target_class not in classes.values():
        raise ValueError(f"Class '{cls}' not found.")
    return target_class


class UnitOfWork:
    """
    One atomic database transaction and the repository operations run in it.

    Instances are created by `DBStorage.unit_of_work()`; services never commit
    or roll back themselves.
    """

    def __init__(self, session, timeout=None):
        self.session = session
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._after_commit = []

    def check_deadline(self):
        """Raise `OperationTimeout` once the caller's deadline has passed."""
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise OperationTimeout(self.timeout)

    def on_commit(self, callback, *args, **kwargs):
        """Queue a call to run once the unit has committed. Dropped on rollback."""
        self._after_commit.append((callback, args, kwargs))

    def run_after_commit(self):
        callbacks, self._after_commit = self._after_commit, []
        for callback, args, kwargs in callbacks:
            callback(*args, **kwargs)

    # --- persistence ------------------------------------------------------

    @staticmethod
    def touch(entity, actor_id=None, now=None):
        """
        Stamp the audit columns of an entity right before it is persisted.
        A row being created gets `created_*` as well as `updated_*`.
        """
        now = now or Utilities.utcnow()
        if entity.created_at is None:
            entity.created_at = now
            entity.created_by = actor_id
        entity.updated_at = now
        entity.updated_by = actor_id
        return entity

    def add(self, entity, actor_id=None, now=None):
        """Touch and stage a new or modified entity."""
        self.check_deadline()
        self.touch(entity, actor_id, now)
        self.session.add(entity)
        return entity

    def flush(self):
        self.check_deadline()
        self.session.flush()

    # --- look-ups ---------------------------------------------------------

    def query(self, cls):
        """A select over the Active rows of a model."""
        cls = _resolve(cls)
        return select(cls).where(cls.lifecycle == Lifecycle.ACTIVE)

    def scalars(self, statement):
        self.check_deadline()
        return list(self.session.scalars(statement))

    def first(self, statement):
        self.check_deadline()
        return self.session.scalars(statement.limit(1)).first()

    def get(self, cls, id):
        """Fetch one Active row by primary key, or None."""
        cls = _resolve(cls)
        return self.first(self.query(cls).where(cls.id == id))

    def get_user(self, user_id):
        return self.get(User, user_id)

    def get_user_by_username(self, username):
        return self.first(self.query(User).where(User.username == username))

    def get_computer(self, computer_id):
        return self.get(Computer, computer_id)

    def get_session(self, session_id):
        return self.get(Session, session_id)

    def get_account(self, account_id):
        return self.get(Account, account_id)

    def get_account_by_user(self, user_id):
        return self.first(self.query(Account).where(Account.user_id == user_id))

    def find_active_session_for_user(self, user_id):
        return self.first(
            self.query(Session).where(
                Session.user_id == user_id, Session.status == SessionStatus.ACTIVE
            )
        )

    def find_active_session_for_computer(self, computer_id):
        return self.first(
            self.query(Session).where(
                Session.computer_id == computer_id,
                Session.status == SessionStatus.ACTIVE,
            )
        )

    def transactions_for_account(self, account_id, limit=None):
        statement = (
            self.query(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.created_at.desc(), Transaction.id)
        )
        if limit is not None:
            statement = statement.limit(limit)
        return self.scalars(statement)

    def transactions_for_session(self, session_id):
        return self.scalars(
            self.query(Transaction)
            .where(Transaction.session_id == session_id)
            .order_by(Transaction.created_at)
        )

    # --- compare-and-swap primitives -------------------------------------

    def _execute_update(self, statement):
        self.check_deadline()
        result = self.session.execute(
            statement.execution_options(synchronize_session=False)
        )
        # Pending changes were autoflushed before the UPDATE; reload the rest lazily.
        self.session.expire_all()
        return result.rowcount == 1

    def compare_and_set_usage_status(
        self, computer_id, expected, new, actor_id=None, now=None
    ):
        """
        Move a computer from `expected` to `new` usage status in one statement.
        Entering InUse stamps `last_used_date`, entering Maintenance stamps
        `last_maintenance_date`.

        :return: True if this call performed the transition, False if the
            computer was not in the expected state (or does not exist).
        """
        now = now or Utilities.utcnow()
        values = {"usage_status": new, "updated_at": now, "updated_by": actor_id}
        if new == UsageStatus.IN_USE:
            values["last_used_date"] = now
        elif new == UsageStatus.MAINTENANCE:
            values["last_maintenance_date"] = now
        return self._execute_update(
            update(Computer)
            .where(
                Computer.id == computer_id,
                Computer.usage_status == expected,
                Computer.lifecycle == Lifecycle.ACTIVE,
            )
            .values(**values)
        )

    def close_session(self, session_id, status, actor_id=None, now=None, **values):
        """
        Close an Active session in one statement. The row only changes if it
        is still Active, so a session can be closed exactly once.

        :return: True if this call closed the session.
        """
        now = now or Utilities.utcnow()
        return self._execute_update(
            update(Session)
            .where(
                Session.id == session_id,
                Session.status == SessionStatus.ACTIVE,
                Session.lifecycle == Lifecycle.ACTIVE,
            )
            .values(status=status, updated_at=now, updated_by=actor_id, **values)
        )

    def credit_balance(self, account_id, amount, actor_id=None, now=None):
        """Add `amount` to a balance atomically and stamp `last_deposit_date`."""
        now = now or Utilities.utcnow()
        return self._execute_update(
            update(Account)
            .where(Account.id == account_id, Account.lifecycle == Lifecycle.ACTIVE)
            .values(
                balance=func.round(Account.balance + amount, 2),
                last_deposit_date=now,
                updated_at=now,
                updated_by=actor_id,
            )
        )

    def debit_balance(self, account_id, amount, actor_id=None, now=None):
        """
        Subtract `amount` from a balance only if the balance covers it. The
        check and the decrement are one statement, so two concurrent debits
        can never both pass against the same stale balance.

        :return: True if the balance was debited.
        """
        now = now or Utilities.utcnow()
        return self._execute_update(
            update(Account)
            .where(
                Account.id == account_id,
                Account.lifecycle == Lifecycle.ACTIVE,
                func.round(Account.balance, 2) >= amount,
            )
            .values(
                balance=func.round(Account.balance - amount, 2),
                last_usage_date=now,
                updated_at=now,
                updated_by=actor_id,
            )
        )

    def soft_delete(self, cls, id, *criteria, actor_id=None, now=None):
        """
        Flip an Active row to Cancelled, optionally only while `criteria` hold.

        :return: True if the row was cancelled by this call.
        """
        cls = _resolve(cls)
        now = now or Utilities.utcnow()
        return self._execute_update(
            update(cls)
            .where(cls.id == id, cls.lifecycle == Lifecycle.ACTIVE, *criteria)
            .values(lifecycle=Lifecycle.CANCELLED, updated_at=now, updated_by=actor_id)
        )

    def refresh(self, entity):
        self.session.refresh(entity)
        return entity


class DBStorage:
    """
    This class is the storage engine for the application. It uses SQLAlchemy to
    interact with the database and hands out units of work.
    """

    __engine = None
    __session = None
    __session_factory = None

    def __init__(self, url="sqlite:///cafe-database.db"):
        connect_args = {}
        if url.startswith("sqlite"):
            # Sessions are opened from the bot's event loop and from scheduler jobs.
            connect_args["check_same_thread"] = False
        self.url = url
        self.__engine = create_engine(url, echo=False, connect_args=connect_args)

    @property
    def engine(self):
        return self.__engine

    def reload(self):
        """
        Create all tables in the database and initialize the session factories.
        :return: None
        """

        Base.metadata.create_all(self.__engine)
        self.__session_factory = sessionmaker(
            bind=self.__engine, expire_on_commit=False
        )
        self.__session = scoped_session(self.__session_factory)

    def close(self):
        """
        Close the current scoped session.
        :return: None
        """
        self.__session.remove()

    @contextmanager
    def unit_of_work(self, timeout=None, join=None):
        """
        Run a block inside one database transaction.

        :param timeout: Optional deadline in seconds. Checked before each
            statement and once more before commit; when exceeded the whole
            unit is rolled back and `OperationTimeout` is raised.
        :param join: An enclosing `UnitOfWork`. When given, the block runs in
            that unit and nothing is committed here.
        :return: The `UnitOfWork` to use inside the block.
        """

        if join is not None:
            yield join
            return

        session = self.__session_factory()
        uow = UnitOfWork(session, timeout)
        try:
            yield uow
            uow.check_deadline()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("Storage failure, transaction rolled back")
            raise StorageError(f"Storage failure: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
        uow.run_after_commit()

    def all(self, cls=None, filters=None):
        """
        Query all Active objects from the database with optional class and filters.
        If no class is provided, query all objects from all classes.
        :param cls: The class of the object to query (e.g., User, Computer, etc.)
        :param filters: Optional dictionary of filters (e.g., {'column': value})
        :return: A dictionary of objects with the format {'ClassName.id': object}
        """

        new_dict = {}
        targets = [_resolve(cls)] if cls else list(classes.values())
        for target_class in targets:
            query = (
                self.__session.query(target_class)
                .populate_existing()
                .filter_by(lifecycle=Lifecycle.ACTIVE)
            )
            objs = query.filter_by(**filters).all() if filters else query.all()
            for obj in objs:
                new_dict[f"{obj.__class__.__name__}.{obj.id}"] = obj
        return new_dict

    def get(self, cls, id):
        """
        Get an Active object from the database based on the class and ID.
        :return: The object if found, otherwise None.
        """

        return self.query_object(cls, id=id)

    def count(self, cls=None):
        """
        Count the number of Active objects in the database. If a class is provided,
        count only objects of that class.
        :return: The number of objects in the database. (int)
        """

        targets = [_resolve(cls)] if cls else list(classes.values())
        total = 0
        for target_class in targets:
            total += self.__session.scalar(
                select(func.count())
                .select_from(target_class)
                .where(target_class.lifecycle == Lifecycle.ACTIVE)
            )
        return total

    def query_object(self, cls, **filters):
        """
        Query an Active object from the database based on the class and given filters.
        Example: query_object(Computer, name='PC-01')

        :return: The first object matching the filters, or None if not found
        """

        cls = _resolve(cls)
        query = (
            self.__session.query(cls)
            .populate_existing()
            .filter(cls.lifecycle == Lifecycle.ACTIVE)
        )
        for attr, value in filters.items():
            query = query.filter(getattr(cls, attr) == value)
        return query.first()
