"""
Ledger operations: prepaid balances and their append-only transaction history.

Balances only move through the guarded storage primitives of `UnitOfWork`
(`credit_balance`, `debit_balance`), so a debit can never push a balance below
zero even when two operations race on the same account. Each operation writes
exactly one `Transaction` row alongside the balance change, in the same unit.

When called with `uow=` the operation joins the caller's unit of work and is
committed (or rolled back) together with the rest of the caller's changes.
The session engine closes sessions this way.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from cafe.accounts import Account
from cafe.exceptions import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidStatus,
    SessionNotFound,
    UserNotFound,
)
from cafe.misc import Utilities
from cafe.transactions import PaymentMethod, Transaction, TransactionType

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class TransactionView:
    id: str
    account_id: str
    user_id: Optional[str]
    user_name: Optional[str]
    session_id: Optional[str]
    amount: Decimal
    type: str
    payment_method: Optional[str]
    reference_number: Optional[str]
    description: Optional[str]
    created_at: datetime

    @classmethod
    def from_model(cls, transaction, user_name=None):
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            user_id=transaction.user_id,
            user_name=user_name,
            session_id=transaction.session_id,
            amount=transaction.amount,
            type=transaction.type,
            payment_method=transaction.payment_method,
            reference_number=transaction.reference_number,
            description=transaction.description,
            created_at=transaction.created_at,
        )


@dataclass
class AccountView:
    id: str
    user_id: str
    user_name: str
    balance: Decimal
    last_deposit_date: Optional[datetime]
    last_usage_date: Optional[datetime]
    recent_transactions: List[TransactionView] = field(default_factory=list)


class LedgerService:
    """Account balances and the transactions that move them."""

    RECENT_TRANSACTIONS = 10
    # Attempts at collecting a partial charge while the balance keeps moving.
    PARTIAL_CHARGE_ATTEMPTS = 3

    def __init__(self, storage, audit, clock=Utilities.utcnow):
        self.storage = storage
        self.audit = audit
        self.clock = clock

    # --- helpers ------------------------------------------------------------

    @staticmethod
    def _amount(value, allow_zero=False):
        try:
            amount = Utilities.to_money(value)
        except ValueError:
            raise InvalidAmount(value, f"Invalid amount: {value!r}.")
        if amount < 0 or (amount == 0 and not allow_zero):
            raise InvalidAmount(value)
        return amount

    @staticmethod
    def _load_account(uow, account_id):
        account = uow.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id=account_id)
        return account

    def _account_view(self, uow, account, with_transactions=False):
        user = uow.get_user(account.user_id)
        user_name = user.username if user else "Unknown"
        view = AccountView(
            id=account.id,
            user_id=account.user_id,
            user_name=user_name,
            balance=account.balance,
            last_deposit_date=account.last_deposit_date,
            last_usage_date=account.last_usage_date,
        )
        if with_transactions:
            view.recent_transactions = [
                TransactionView.from_model(t, user_name)
                for t in uow.transactions_for_account(
                    account.id, limit=self.RECENT_TRANSACTIONS
                )
            ]
        return view

    def _append(self, uow, account, amount, type, actor_id, now, **fields):
        transaction = Transaction(
            account_id=account.id,
            user_id=fields.pop("user_id", account.user_id),
            amount=amount,
            type=type,
            **fields,
        )
        uow.add(transaction, actor_id, now)
        uow.flush()
        return transaction

    # --- accounts -----------------------------------------------------------

    def create_account(self, user_id, actor_id=None, uow=None, timeout=None):
        """
        Open the account of a user. Accounts are created once per user; asking
        again returns the existing account.
        """
        with self.storage.unit_of_work(timeout, join=uow) as uow:
            user = uow.get_user(user_id)
            if user is None:
                raise UserNotFound(user_id)
            existing = uow.get_account_by_user(user_id)
            if existing is not None:
                logger.warning("Account already exists for user %s", user_id)
                return self._account_view(uow, existing)

            now = self.clock()
            account = Account(user_id=user_id, balance=ZERO)
            uow.add(account, actor_id, now)
            uow.flush()
            uow.on_commit(
                self.audit.log_activity,
                "AccountCreated",
                "Account",
                account.id,
                actor_id,
                now,
                f"Account created for user {user_id}",
            )
            logger.info("Created account %s for user %s", account.id, user_id)
            return self._account_view(uow, account)

    def get_balance(self, account_id) -> Decimal:
        with self.storage.unit_of_work() as uow:
            return self._load_account(uow, account_id).balance

    def get_balance_by_user(self, user_id) -> Decimal:
        return self.get_account_by_user(user_id).balance

    def get_account_by_user(self, user_id) -> AccountView:
        with self.storage.unit_of_work() as uow:
            account = uow.get_account_by_user(user_id)
            if account is None:
                raise AccountNotFound(user_id=user_id)
            return self._account_view(uow, account)

    def has_sufficient_balance(self, account_id, amount) -> bool:
        amount = self._amount(amount, allow_zero=True)
        return self.get_balance(account_id) >= amount

    def get_account_with_transactions(self, account_id) -> AccountView:
        """Account view with its most recent transactions, newest first."""
        with self.storage.unit_of_work() as uow:
            account = self._load_account(uow, account_id)
            return self._account_view(uow, account, with_transactions=True)

    def get_transactions(self, account_id) -> List[TransactionView]:
        with self.storage.unit_of_work() as uow:
            account = self._load_account(uow, account_id)
            user = uow.get_user(account.user_id)
            return [
                TransactionView.from_model(t, user.username if user else None)
                for t in uow.transactions_for_account(account.id)
            ]

    # --- balance movements --------------------------------------------------

    def deposit(
        self,
        account_id,
        amount,
        method=None,
        reference=None,
        actor_id=None,
        uow=None,
        timeout=None,
    ) -> TransactionView:
        """
        Credit an account and record a Deposit transaction.

        :raises InvalidAmount: amount is not greater than zero.
        :raises InvalidStatus: unknown payment method.
        :raises AccountNotFound: no such account.
        """
        amount = self._amount(amount)
        if method is not None and method not in PaymentMethod.ALL:
            raise InvalidStatus(method, PaymentMethod.ALL)

        with self.storage.unit_of_work(timeout, join=uow) as uow:
            now = self.clock()
            account = self._load_account(uow, account_id)
            if not uow.credit_balance(account.id, amount, actor_id, now):
                raise AccountNotFound(account_id=account_id)
            transaction = self._append(
                uow,
                account,
                amount,
                TransactionType.DEPOSIT,
                actor_id,
                now,
                payment_method=method,
                reference_number=reference,
                description="Deposit to account",
            )
            uow.on_commit(
                self.audit.log_activity,
                "AccountDeposit",
                "Account",
                account.id,
                actor_id,
                now,
                f"Deposit of {amount} to account {account.id}",
            )
            logger.info("Deposited %s to account %s", amount, account.id)
            return TransactionView.from_model(transaction)

    def withdraw(
        self, account_id, amount, reason=None, actor_id=None, uow=None, timeout=None
    ) -> TransactionView:
        """
        Debit an account and record a Withdrawal transaction.

        :raises InvalidAmount: amount is not greater than zero.
        :raises InsufficientBalance: the balance does not cover the amount.
        :raises AccountNotFound: no such account.
        """
        amount = self._amount(amount)

        with self.storage.unit_of_work(timeout, join=uow) as uow:
            now = self.clock()
            account = self._load_account(uow, account_id)
            if not uow.debit_balance(account.id, amount, actor_id, now):
                uow.refresh(account)
                logger.warning(
                    "Withdrawal of %s refused for account %s, balance %s",
                    amount,
                    account.id,
                    account.balance,
                )
                raise InsufficientBalance(account.balance, amount)
            transaction = self._append(
                uow,
                account,
                -amount,
                TransactionType.WITHDRAWAL,
                actor_id,
                now,
                description=reason or "Withdrawal from account",
            )
            uow.on_commit(
                self.audit.log_activity,
                "AccountWithdrawal",
                "Account",
                account.id,
                actor_id,
                now,
                f"Withdrawal of {amount} from account {account.id}",
            )
            logger.info("Withdrew %s from account %s", amount, account.id)
            return TransactionView.from_model(transaction)

    def charge_for_session(
        self,
        account_id,
        session_id,
        amount,
        actor_id=None,
        uow=None,
        timeout=None,
        allow_partial=False,
    ) -> TransactionView:
        """
        Bill a session: debit the account and record a ComputerUsage
        transaction tied to the session and its user.

        A zero amount still records the (zero) charge so every closed session
        has exactly one. With `allow_partial` the debit is capped at whatever
        the balance holds instead of failing; the returned transaction then
        shows how much was actually collected.

        :raises InvalidAmount: amount is negative.
        :raises InsufficientBalance: the balance does not cover the amount and
            `allow_partial` is not set.
        :raises AccountNotFound: no such account.
        :raises SessionNotFound: no such session.
        """
        amount = self._amount(amount, allow_zero=True)

        with self.storage.unit_of_work(timeout, join=uow) as uow:
            now = self.clock()
            account = self._load_account(uow, account_id)
            session = uow.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            collected = self._collect(uow, account, amount, allow_partial, actor_id, now)
            transaction = self._append(
                uow,
                account,
                ZERO - collected,
                TransactionType.COMPUTER_USAGE,
                actor_id,
                now,
                user_id=session.user_id,
                session_id=session.id,
                description=f"Charge for session #{session.id}",
            )
            uow.on_commit(
                self.audit.log_activity,
                "SessionCharge",
                "Account",
                account.id,
                actor_id or session.user_id,
                now,
                f"Charge of {collected} for session {session.id}",
            )
            logger.info(
                "Charged %s to account %s for session %s",
                collected,
                account.id,
                session.id,
            )
            return TransactionView.from_model(transaction)

    def _collect(self, uow, account, amount, allow_partial, actor_id, now):
        if amount == 0 or uow.debit_balance(account.id, amount, actor_id, now):
            return amount
        if not allow_partial:
            uow.refresh(account)
            logger.warning(
                "Charge of %s refused for account %s, balance %s",
                amount,
                account.id,
                account.balance,
            )
            raise InsufficientBalance(account.balance, amount)

        for _ in range(self.PARTIAL_CHARGE_ATTEMPTS):
            uow.refresh(account)
            available = min(account.balance, amount)
            if available <= 0:
                return ZERO
            if uow.debit_balance(account.id, available, actor_id, now):
                return available
        uow.refresh(account)
        raise InsufficientBalance(account.balance, amount)
