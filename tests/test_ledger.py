from decimal import Decimal

import pytest

from cafe.exceptions import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidStatus,
    SessionNotFound,
    UserNotFound,
)
from cafe.transactions import PaymentMethod, TransactionType

from conftest import STAFF


@pytest.fixture
def account(ledger, make_user):
    user = make_user("bob", balance=None)
    return ledger.get_account_by_user(user.id)


def test_registration_opens_an_empty_account(account, audit):
    assert account.balance == Decimal("0.00")
    assert account.user_name == "bob"
    assert "AccountCreated" in audit.actions


def test_create_account_is_idempotent(ledger, account):
    again = ledger.create_account(account.user_id, actor_id=STAFF)
    assert again.id == account.id


def test_create_account_for_unknown_user(ledger):
    with pytest.raises(UserNotFound):
        ledger.create_account("missing")


def test_deposit_then_withdraw_round_trip(ledger, account, clock):
    ledger.deposit(account.id, 1000, method=PaymentMethod.CASH, actor_id=STAFF)
    clock.advance(minutes=1)
    ledger.withdraw(account.id, 1000, actor_id=STAFF)

    assert ledger.get_balance(account.id) == Decimal("0.00")
    transactions = ledger.get_transactions(account.id)
    assert [(t.type, t.amount) for t in transactions] == [
        (TransactionType.WITHDRAWAL, Decimal("-1000.00")),
        (TransactionType.DEPOSIT, Decimal("1000.00")),
    ]
    assert transactions[1].payment_method == PaymentMethod.CASH
    assert transactions[1].description == "Deposit to account"


def test_deposit_stamps_last_deposit_date(ledger, account, clock):
    ledger.deposit(account.id, "250.5")
    view = ledger.get_account_by_user(account.user_id)
    assert view.balance == Decimal("250.50")
    assert view.last_deposit_date == clock.now


@pytest.mark.parametrize("amount", [0, -5, "abc", "0.001"])
def test_deposit_rejects_non_positive_amounts(ledger, account, amount):
    with pytest.raises(InvalidAmount):
        ledger.deposit(account.id, amount)
    assert ledger.get_transactions(account.id) == []


def test_invalid_amount_is_a_value_error(ledger, account):
    with pytest.raises(ValueError):
        ledger.withdraw(account.id, -1)


def test_deposit_rejects_unknown_payment_method(ledger, account):
    with pytest.raises(InvalidStatus):
        ledger.deposit(account.id, 100, method="Barter")


def test_deposit_to_unknown_account(ledger):
    with pytest.raises(AccountNotFound):
        ledger.deposit("missing", 100)


def test_withdraw_more_than_balance(ledger, account, audit):
    ledger.deposit(account.id, 500)
    with pytest.raises(InsufficientBalance) as excinfo:
        ledger.withdraw(account.id, 501)

    assert excinfo.value.current_balance == Decimal("500.00")
    assert excinfo.value.required_amount == Decimal("501.00")
    assert ledger.get_balance(account.id) == Decimal("500.00")
    assert len(ledger.get_transactions(account.id)) == 1
    assert "AccountWithdrawal" not in audit.actions


def test_withdraw_whole_balance(ledger, account):
    ledger.deposit(account.id, "99.99")
    ledger.withdraw(account.id, "99.99", reason="refund")
    assert ledger.get_balance(account.id) == Decimal("0.00")
    assert ledger.get_transactions(account.id)[0].description == "refund"


def test_has_sufficient_balance(ledger, account):
    ledger.deposit(account.id, 100)
    assert ledger.has_sufficient_balance(account.id, 100)
    assert not ledger.has_sufficient_balance(account.id, "100.01")


def test_account_with_transactions_lists_the_newest_ten(ledger, account, clock):
    for n in range(1, 13):
        clock.advance(minutes=1)
        ledger.deposit(account.id, n)

    view = ledger.get_account_with_transactions(account.id)
    assert view.balance == Decimal("78.00")
    assert len(view.recent_transactions) == 10
    assert view.recent_transactions[0].amount == Decimal("12.00")
    assert view.recent_transactions[-1].amount == Decimal("3.00")
    assert all(t.user_name == "bob" for t in view.recent_transactions)


def test_balance_after_many_cent_movements(ledger, account):
    for _ in range(10):
        ledger.deposit(account.id, "0.10")
    for _ in range(3):
        ledger.withdraw(account.id, "0.10")
    assert ledger.get_balance(account.id) == Decimal("0.70")
    ledger.withdraw(account.id, "0.70")
    assert ledger.get_balance(account.id) == Decimal("0.00")


def test_charge_for_unknown_session(ledger, account):
    ledger.deposit(account.id, 100)
    with pytest.raises(SessionNotFound):
        ledger.charge_for_session(account.id, "missing", 10)
    assert ledger.get_balance(account.id) == Decimal("100.00")


def test_audit_events_follow_each_movement(ledger, account, audit):
    ledger.deposit(account.id, 10, actor_id=STAFF)
    ledger.withdraw(account.id, 5, actor_id=STAFF)
    deposit, withdrawal = audit.events[-2:]
    assert (deposit.action, deposit.entity_id, deposit.actor_id) == (
        "AccountDeposit",
        account.id,
        STAFF,
    )
    assert withdrawal.action == "AccountWithdrawal"
