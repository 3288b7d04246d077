"""
The `commands` submodule is the staff-facing Telegram bot over the billing core.

Modules:
- `main_bot.py`: Contains the `BotManager` class which manages the Telegram bot, including starting the bot, handling commands, and handling callbacks.
- `user.py`: `UserRoutes`, registering users, changing their status and linking Telegram accounts.
- `payment.py`: `PaymentRoutes`, deposits, withdrawals, balances, history and earnings.
- `computer.py`: `ComputerRoutes`, the computer inventory.
- `session.py`: `SessionRoutes`, starting, ending and terminating sessions.
- `system.py`: `SystemRoutes` (help, customer self-service, statistics and reports) and `JobManager` (scheduled sweep and daily report).

Importing this package creates the Telegram client, the route handlers and the `BotManager`.
Routes map commands (strings like "/start_session") to handlers; callbacks map inline
button data (like "end_session <id>") to handlers.
"""

from telethon import TelegramClient

from resources.constants import API_HASH, API_ID

client = TelegramClient("cafe_billing_bot", API_ID, API_HASH)

# Importing command handlers
from cafe.commands.computer import ComputerRoutes
from cafe.commands.main_bot import BotManager
from cafe.commands.payment import PaymentRoutes
from cafe.commands.session import SessionRoutes
from cafe.commands.system import JobManager, SystemRoutes
from cafe.commands.user import UserRoutes

# Initialize command handlers for different sections
user_routes = UserRoutes()
payment_routes = PaymentRoutes()
computer_routes = ComputerRoutes()
session_routes = SessionRoutes()
job_manager = JobManager()
system_routes = SystemRoutes()

# Define routes mapping for bot commands
routes = {
    "/start": system_routes.start_command,
    "/help": system_routes.help_command,
    "/status": system_routes.user_status,
    "/stats": system_routes.show_stats,
    "/gen_report": system_routes.generate_report,
    "/report_time": system_routes.report_time,
    "/register": user_routes.register_user,
    "/suspend": user_routes.suspend_user,
    "/activate": user_routes.activate_user,
    "/link_user": user_routes.link_user,
    "/deposit": payment_routes.deposit,
    "/withdraw": payment_routes.withdraw,
    "/balance": payment_routes.show_balance,
    "/history": payment_routes.payment_history,
    "/earnings": payment_routes.show_earnings,
    "/add_pc": computer_routes.add_computer,
    "/pcs": computer_routes.list_computers,
    "/pc_status": computer_routes.set_status,
    "/maintenance": computer_routes.maintenance,
    "/remove_pc": computer_routes.remove_computer,
    "/start_session": session_routes.start_session,
    "/end_session": session_routes.end_session,
    "/terminate": session_routes.terminate_session,
    "/sessions": session_routes.list_sessions,
    "/remaining": session_routes.remaining_time,
    "/cost": session_routes.session_cost,
}

# Define callback mappings for inline keyboard actions
callbacks = {
    "end_session": session_routes.handle_end,
    "terminate": session_routes.handle_terminate,
}

# Initialize the BotManager with client, routes, and callbacks
bot = BotManager(client=client, routes=routes, callbacks=callbacks)
