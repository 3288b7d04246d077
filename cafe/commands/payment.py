from datetime import timedelta

from cafe import ledger, statistics, storage
from cafe.misc import Auth, Utilities
from cafe.transactions import PaymentMethod
from resources.constants import CURRENCY, OPERATION_TIMEOUT_SECONDS


class PaymentRoutes:
    """
    Routes for account balances: deposits, withdrawals, balance and history.
    """

    @staticmethod
    def _account_of(username):
        user = storage.query_object("User", username=username)
        if not user:
            return None
        return storage.query_object("Account", user_id=user.id)

    # /earnings command
    @Auth.authorized_user
    @Auth.replies_errors
    async def show_earnings(self, event):
        """
        Show the usage revenue of a period, the last 7 days by default.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        try:
            end = Utilities.parse_date(args[2]) if len(args) > 2 else Utilities.utcnow().date()
            start = Utilities.parse_date(args[1]) if len(args) > 1 else end - timedelta(days=6)
        except ValueError:
            await event.respond("❓ Usage: /earnings [YYYY-MM-DD] [YYYY-MM-DD]")
            return

        summary = statistics.get_revenue_summary(start, end)
        response = f"💰 **Earnings {start} to {end}:** `{Utilities.format_money(summary.total_revenue, CURRENCY)}`\n\n"
        response += "\n".join(
            f"📅 {day.date}: `{Utilities.format_money(day.amount, CURRENCY)}`"
            for day in summary.daily_revenue
        )
        await event.respond(response)

    # /history command
    @Auth.authorized_user
    @Auth.replies_errors
    async def payment_history(self, event):
        """
        Show the most recent transactions of a user.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) < 2:
            await event.respond("❓ Usage: /history <username>")
            return

        username = args[1]
        account = self._account_of(username)
        if not account:
            await event.respond(f"❌ User `{username}` not found.")
            return

        view = ledger.get_account_with_transactions(account.id)
        if not view.recent_transactions:
            await event.respond(f"❌ No transactions found for user `{username}`.")
            return

        response = f"📜 **Transactions of** `{username}`:\n\n"
        response += "\n".join(
            f"💵 `{Utilities.format_money(t.amount, CURRENCY)}` {t.type} "
            f"on {Utilities.get_date_str(t.created_at)}"
            + (f" ({t.description})" if t.description else "")
            for t in view.recent_transactions
        )
        await event.respond(response)

    # /balance command
    @Auth.authorized_user
    @Auth.replies_errors
    async def show_balance(self, event):
        args = event.message.text.split()
        if len(args) < 2:
            await event.respond("❓ Usage: /balance <username>")
            return

        username = args[1]
        account = self._account_of(username)
        if not account:
            await event.respond(f"❌ User `{username}` not found.")
            return
        balance = ledger.get_balance(account.id)
        await event.respond(
            f"💰 Balance of `{username}`: `{Utilities.format_money(balance, CURRENCY)}`"
        )

    # /deposit command
    @Auth.authorized_user
    @Auth.replies_errors
    async def deposit(self, event):
        """
        Credit a user's account.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) < 3:
            await event.respond(
                "❓ Usage: /deposit <username> <amount> [method] [reference]\n"
                f"Methods: {', '.join(PaymentMethod.ALL)}\n"
                "For example: `/deposit john 50000 Cash`"
            )
            return

        username, amount = args[1], args[2]
        method = args[3] if len(args) > 3 else PaymentMethod.CASH
        reference = args[4] if len(args) > 4 else None
        account = self._account_of(username)
        if not account:
            await event.respond(f"❌ User `{username}` not found.")
            return

        transaction = ledger.deposit(
            account.id,
            amount,
            method,
            reference,
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        balance = ledger.get_balance(account.id)
        await event.respond(
            f"✅ `{Utilities.format_money(transaction.amount, CURRENCY)}` deposited to `{username}`.\n"
            f"💰 New balance: `{Utilities.format_money(balance, CURRENCY)}`"
        )

    # /withdraw command
    @Auth.authorized_user
    @Auth.replies_errors
    async def withdraw(self, event):
        """
        Debit a user's account, e.g. to refund unused credit.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split(maxsplit=3)
        if len(args) < 3:
            await event.respond("❓ Usage: /withdraw <username> <amount> [reason]")
            return

        username, amount = args[1], args[2]
        reason = args[3] if len(args) > 3 else None
        account = self._account_of(username)
        if not account:
            await event.respond(f"❌ User `{username}` not found.")
            return

        transaction = ledger.withdraw(
            account.id,
            amount,
            reason,
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        balance = ledger.get_balance(account.id)
        await event.respond(
            f"✅ `{Utilities.format_money(-transaction.amount, CURRENCY)}` withdrawn from `{username}`.\n"
            f"💰 New balance: `{Utilities.format_money(balance, CURRENCY)}`"
        )
