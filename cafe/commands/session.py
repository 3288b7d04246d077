from telethon import Button

from cafe import session_engine, storage
from cafe.misc import Auth, Utilities
from resources.constants import CURRENCY, OPERATION_TIMEOUT_SECONDS


def session_summary(session):
    """Chat rendering of a `SessionView`."""
    lines = [
        f"🖥️ **Computer:** `{session.computer_name}`",
        f"👤 **User:** `{session.user_name}`",
        f"🕒 **Started:** {Utilities.get_date_str(session.start_time)}",
        f"📌 **Status:** {session.status}",
    ]
    if session.end_time:
        lines.append(f"🏁 **Ended:** {Utilities.get_date_str(session.end_time)}")
        lines.append(
            "⏳ **Duration:** "
            f"{Utilities.parse_duration_to_human_readable(session.duration.total_seconds())}"
        )
        lines.append(f"💰 **Cost:** `{Utilities.format_money(session.total_cost, CURRENCY)}`")
    if session.unpaid_amount:
        lines.append(f"⚠️ **Unpaid:** `{Utilities.format_money(session.unpaid_amount, CURRENCY)}`")
    if session.notes:
        lines.append(f"📝 **Notes:** {session.notes}")
    return "\n".join(lines)


class SessionRoutes:
    """
    Routes for running computer sessions.
    Staff start sessions for customers and close them from the chat.
    """

    @staticmethod
    def _active_session_on(computer_name):
        computer = storage.query_object("Computer", name=computer_name)
        if not computer:
            return None, None
        return computer, session_engine.get_active_session_by_computer(computer.id)

    # /start_session command
    @Auth.authorized_user
    @Auth.replies_errors
    async def start_session(self, event):
        """
        Start a session for a user on a computer.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) < 3:
            await event.respond(
                "❓ Usage: /start_session <username> <computer>\n"
                "For example: `/start_session john PC-01`"
            )
            return

        username, computer_name = args[1], args[2]
        user = storage.query_object("User", username=username)
        if not user:
            await event.respond(f"❌ User `{username}` not found.")
            return
        computer = storage.query_object("Computer", name=computer_name)
        if not computer:
            await event.respond(f"❌ Computer `{computer_name}` not found.")
            return

        session = session_engine.start_session(
            user.id,
            computer.id,
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        await event.respond(f"▶️ Session started!\n\n{session_summary(session)}")

    async def _close(self, event, computer_name, note, terminate):
        computer, session = self._active_session_on(computer_name)
        if not computer:
            await event.respond(f"❌ Computer `{computer_name}` not found.")
            return
        if not session:
            await event.respond(f"❌ No active session on `{computer_name}`.")
            return
        await self._close_by_id(event, session.id, note, terminate)

    async def _close_by_id(self, event, session_id, note, terminate):
        close = session_engine.terminate_session if terminate else session_engine.end_session
        session = close(
            session_id,
            note,
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        title = "⛔ Session terminated!" if terminate else "⏹️ Session ended!"
        await event.respond(f"{title}\n\n{session_summary(session)}")

    # /end_session command
    @Auth.authorized_user
    @Auth.replies_errors
    async def end_session(self, event):
        """
        End the active session on a computer and charge the user.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split(maxsplit=2)
        if len(args) < 2:
            await event.respond("❓ Usage: /end_session <computer> [notes]")
            return
        await self._close(event, args[1], args[2] if len(args) > 2 else None, False)

    # /terminate command
    @Auth.authorized_user
    @Auth.replies_errors
    async def terminate_session(self, event):
        """
        Force the active session on a computer closed. Whatever the balance
        cannot cover is recorded as unpaid.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split(maxsplit=2)
        if len(args) < 3:
            await event.respond(
                "❓ Usage: /terminate <computer> <reason>\n"
                "For example: `/terminate PC-01 hardware fault`"
            )
            return
        await self._close(event, args[1], args[2], True)

    # /sessions command
    @Auth.authorized_user
    async def list_sessions(self, event):
        """
        List the active sessions with their running cost.
        Each entry comes with buttons to end or terminate it.
        :param event: Event object.
        :return: None
        """

        sessions = session_engine.get_active_sessions()
        if not sessions:
            await event.respond("💤 No active sessions.")
            return

        for session in sessions:
            cost = session_engine.calculate_session_cost(session.id)
            await event.respond(
                f"{session_summary(session)}\n"
                f"💸 **Running cost:** `{Utilities.format_money(cost, CURRENCY)}`",
                buttons=[
                    [
                        Button.inline("End", data=f"end_session {session.id}"),
                        Button.inline("Terminate", data=f"terminate {session.id}"),
                    ]
                ],
            )

    @Auth.authorized_user
    @Auth.replies_errors
    async def handle_end(self, event):
        """
        Callback query handler ending a session from the /sessions list.
        :param event: Event object.
        :return: None
        """

        session_id = event.data.decode().split()[1]
        await self._close_by_id(event, session_id, None, False)

    @Auth.authorized_user
    @Auth.replies_errors
    async def handle_terminate(self, event):
        """
        Callback query handler terminating a session from the /sessions list.
        :param event: Event object.
        :return: None
        """

        session_id = event.data.decode().split()[1]
        await self._close_by_id(event, session_id, "terminated by staff", True)

    # /remaining command
    @Auth.authorized_user
    @Auth.replies_errors
    async def remaining_time(self, event):
        """
        Show how much play time a user's balance still buys.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) < 2:
            await event.respond("❓ Usage: /remaining <username>")
            return

        username = args[1]
        user = storage.query_object("User", username=username)
        if not user:
            await event.respond(f"❌ User `{username}` not found.")
            return
        session = storage.query_object("Session", user_id=user.id, status="Active")
        if not session:
            await event.respond(f"❌ User `{username}` has no active session.")
            return

        remaining = session_engine.get_remaining_time(user.id, session.computer_id)
        await event.respond(
            f"⏳ User `{username}` can play for another "
            f"{Utilities.parse_duration_to_human_readable(remaining.total_seconds())}."
        )

    # /cost command
    @Auth.authorized_user
    @Auth.replies_errors
    async def session_cost(self, event):
        """
        Show the running cost of the session on a computer.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) < 2:
            await event.respond("❓ Usage: /cost <computer>")
            return

        computer, session = self._active_session_on(args[1])
        if not computer:
            await event.respond(f"❌ Computer `{args[1]}` not found.")
            return
        if not session:
            await event.respond(f"❌ No active session on `{args[1]}`.")
            return

        details = session_engine.get_session_details(session.id)
        await event.respond(
            f"{session_summary(details.session)}\n"
            f"🏷️ **Rate:** `{Utilities.format_money(details.hourly_rate, CURRENCY)}` / hour\n"
            f"💸 **Running cost:** `{Utilities.format_money(details.current_cost, CURRENCY)}`"
        )
