from telethon import Button

from cafe import ledger, storage, users
from cafe.commands import client
from cafe.misc import Auth, Utilities
from cafe.users import UserStatus
from resources.constants import CURRENCY, OPERATION_TIMEOUT_SECONDS, TG_BOT_USERNAME


class UserRoutes:
    # /register command
    @Auth.authorized_user
    @Auth.replies_errors
    async def register_user(self, event):
        """
        Register a customer and open their account.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split(maxsplit=3)
        if len(args) < 3:
            await event.respond(
                "❓ Usage: /register <username> <email> [full name]\n"
                "For example: `/register john john@example.com John Doe`"
            )
            return

        user = users.register_user(
            args[1],
            args[2],
            full_name=args[3] if len(args) > 3 else "",
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        account = ledger.get_account_by_user(user.id)
        await event.respond(
            f"✅ User `{user.username}` registered.\n\n"
            f"👤 **Name:** {user.full_name or '-'}\n"
            f"📧 **Email:** {user.email}\n"
            f"💰 **Balance:** `{Utilities.format_money(account.balance, CURRENCY)}`\n\n"
            f"Use `/deposit {user.username} <amount>` to top up and "
            f"`/link_user {user.username}` to connect their Telegram account."
        )

    async def _set_status(self, event, status, usage):
        args = event.message.text.split()
        if len(args) < 2:
            await event.respond(usage)
            return

        username = args[1]
        user = storage.query_object("User", username=username)
        if not user:
            await event.respond(f"❌ User `{username}` not found.")
            return
        view = users.set_status(
            user.id, status, actor_id=Auth.actor(event), timeout=OPERATION_TIMEOUT_SECONDS
        )
        await event.respond(f"✅ User `{view.username}` is now {view.status}.")

    # /suspend command
    @Auth.authorized_user
    @Auth.replies_errors
    async def suspend_user(self, event):
        await self._set_status(event, UserStatus.SUSPENDED, "❓ Usage: /suspend <username>")

    # /activate command
    @Auth.authorized_user
    @Auth.replies_errors
    async def activate_user(self, event):
        await self._set_status(event, UserStatus.ACTIVE, "❓ Usage: /activate <username>")

    # Link a Telegram user to a cafe user
    # The customer opens the deep link and the bot receives /start <uuid>
    @Auth.authorized_user
    async def link_user(self, event):

        if len(event.message.text.split()) < 2:
            await event.respond("❓ Usage: /link_user <username>")
            return

        username = event.message.text.split()[1]
        user = storage.query_object("User", username=username)

        if not user:
            await event.respond(f"❌ User `{username}` not found.")
            return

        tg_user = storage.query_object("TelegramUser", user_id=user.id)
        if tg_user:
            await event.respond(
                f"❌ User `{username}` is already linked to a Telegram user."
            )
            return

        bot_username = TG_BOT_USERNAME or (await client.get_me()).username
        await event.respond(
            f"🔗 Send the button below to `{username}` to link their Telegram account.",
            buttons=[
                Button.url(
                    "Link User",
                    f"https://t.me/{bot_username}?start={user.uuid}",
                )
            ],
        )
