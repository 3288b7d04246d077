import asyncio
import html
import json
import logging
import tempfile
from datetime import timedelta

import redis.asyncio as redis
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from weasyprint import HTML

from cafe import ledger, session_engine, statistics, storage, users
from cafe.commands import client
from cafe.exceptions import CafeError
from cafe.misc import Auth, Utilities
from cafe.services.reports import ReportRenderer
from resources.constants import (
    ADMIN_ID,
    CURRENCY,
    OPERATION_TIMEOUT_SECONDS,
    REDIS_DB,
    REDIS_HOST,
    REDIS_PORT,
    REPORT_HOUR,
    SWEEP_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)

report_renderer = ReportRenderer(statistics)


def write_report_pdf(start=None, end=None):
    """
    Render the statistics report of a period to a temporary PDF file.
    :return: Path of the PDF file.
    """

    html_content = report_renderer.generate_html(start, end)
    with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as temp_pdf:
        HTML(string=html_content).write_pdf(temp_pdf.name)
        return temp_pdf.name


def parse_period(args):
    """`[start] [end]` command arguments as dates. Missing ones are None."""
    start = Utilities.parse_date(args[0]) if len(args) > 0 else None
    end = Utilities.parse_date(args[1]) if len(args) > 1 else None
    return start, end


class SystemRoutes:
    """
    Routes for help, customer self-service and reporting.
    """

    # /help command
    @Auth.authorized_user
    async def help_command(self, event):
        """
        Show the help message for admin commands.
        :param event: Event object.
        :return: None
        """
        help_text = """

        🔐 **Admin Commands:**

        👤 **Users**
        - `/register <username> <email> [full name]`: Register a customer and open their account.
        - `/suspend <username>` / `/activate <username>`: Change a user's status.
        - `/link_user <username>`: Get the link that connects a customer's Telegram account.

        💰 **Accounts**
        - `/deposit <username> <amount> [method] [reference]`: Top up a balance.
        - `/withdraw <username> <amount> [reason]`: Take money out of a balance.
        - `/balance <username>`: Show a balance.
        - `/history <username>`: Show the latest transactions.
        - `/earnings [start] [end]`: Show usage revenue per day.

        🖥️ **Computers**
        - `/add_pc <name> <ip> <hourly_rate> [location]`: Register a computer.
        - `/pcs [status]`: List computers.
        - `/pc_status <name> <status>`: Set a computer Available or in Maintenance.
        - `/maintenance <name> [reason]`: Send a computer to maintenance.
        - `/remove_pc <name>`: Remove a computer.

        ⏱️ **Sessions**
        - `/start_session <username> <computer>`: Start a session.
        - `/end_session <computer> [notes]`: End a session and charge it.
        - `/terminate <computer> <reason>`: Force a session closed.
        - `/sessions`: List active sessions.
        - `/remaining <username>`: Play time left for a user.
        - `/cost <computer>`: Running cost of a session.

        📊 **Reports**
        - `/stats [start] [end]`: Usage statistics.
        - `/gen_report [start] [end]`: PDF report.
        - `/report_time <hour>`: Hour (UTC) of the daily report.

        Dates are written `YYYY-MM-DD`.
        """
        await event.respond(help_text)

    # /gen_report command
    @Auth.authorized_user
    async def generate_report(self, event):
        """
        A command handler for /gen_report command.
        Generate the statistics report of a period in PDF format.
        The PDF will be generated using HTML content generated from the Jinja2 template.
        :param event: Event object.
        :return: None
        """

        try:
            start, end = parse_period(event.message.text.split()[1:])
        except ValueError:
            await event.respond("❓ Usage: /gen_report [YYYY-MM-DD] [YYYY-MM-DD]")
            return

        await event.respond("🔄 Generating report...")
        try:
            pdf_file_path = write_report_pdf(start, end)
        except CafeError as e:
            await event.respond(f"❌ Error generating report: {e.message}")
            return

        await client.send_file(
            event.chat_id,
            pdf_file_path,
            caption=f"📄 Report {Utilities.get_date_str(Utilities.utcnow())}",
        )

    # /stats command
    @Auth.authorized_user
    @Auth.replies_errors
    async def show_stats(self, event):
        """
        Show occupancy right now and usage statistics of a period.
        :param event: Event object.
        :return: None
        """

        try:
            start, end = parse_period(event.message.text.split()[1:])
        except ValueError:
            await event.respond("❓ Usage: /stats [YYYY-MM-DD] [YYYY-MM-DD]")
            return
        end = end or Utilities.utcnow().date()
        start = start or end - timedelta(days=6)

        summary = statistics.get_summary()
        usage = statistics.get_usage_statistics(start, end)

        message = (
            "📊 **Right now**\n\n"
            f"💰 Revenue today: `{Utilities.format_money(summary.total_revenue, CURRENCY)}`\n"
            f"👥 Active users: {summary.active_users_count}\n"
            f"⏱️ Active sessions: {summary.active_sessions_count}\n"
            f"🔴 Computers in use: {summary.computers_in_use_count}\n"
            f"🟢 Available computers: {summary.available_computers_count}\n\n"
            f"📈 **{start} to {end}**\n\n"
            f"⌛ Average session: {usage.average_session_duration} minutes\n"
        )
        if usage.peak_usage_hours:
            message += "🔥 Peak hours (UTC): " + ", ".join(
                f"{h.hour:02d}:00 ({h.count})" for h in usage.peak_usage_hours
            )
            message += "\n"
        if usage.top_users:
            message += "🏆 Top users:\n" + "\n".join(
                f"   {i}. `{u.user_name}` {Utilities.format_money(u.total_spent, CURRENCY)}"
                for i, u in enumerate(usage.top_users, start=1)
            )
        await event.respond(message)

    # /report_time command
    @Auth.authorized_user
    async def report_time(self, event):
        args = event.message.text.split()
        if len(args) < 2 or not args[1].isdigit() or not 0 <= int(args[1]) <= 23:
            await event.respond("❓ Usage: /report_time <hour 0-23>")
            return

        from cafe.commands import job_manager

        await job_manager.schedule_daily_report(int(args[1]))
        await event.respond(f"✅ Daily report will be sent at {int(args[1]):02d}:00 UTC.")

    # /start command
    @Auth.replies_errors
    async def start_command(self, event):
        """
        Handle the /start command with a user UUID for linking Telegram users to cafe users.
        :param event: Event object.
        :return:
        """

        args = event.message.text.split()
        if len(args) <= 1:
            await event.respond("👋 Welcome! Ask the staff for your link, then use /status.")
            return

        sender = await event.get_sender()
        user = users.link_telegram(
            args[1],
            event.sender_id,
            tg_username=getattr(sender, "username", None),
            tg_first_name=getattr(sender, "first_name", None),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )

        first_name = getattr(sender, "first_name", None) or user.username
        user_url = "tg://user?id={}".format(event.sender_id)
        user_tag = f"<a href='{user_url}'>{html.escape(first_name)}</a>"
        await event.respond(
            f"{user_tag}\n\n✅ Linked to cafe user <code>{html.escape(user.username)}</code>."
            "\nUse /status to see your balance and remaining time.",
            parse_mode="html",
            link_preview=False,
        )
        await client.send_message(
            ADMIN_ID,
            f"🔗 {user_tag} linked to cafe user <code>{html.escape(user.username)}</code>",
            parse_mode="html",
            link_preview=False,
        )

    # /status command
    @Auth.replies_errors
    async def user_status(self, event):
        tg_user = storage.query_object("TelegramUser", tg_user_id=event.sender_id)
        if not tg_user:
            await event.respond("❌ User not found.")
            return

        user = users.get_user_by_telegram(event.sender_id)
        balance = ledger.get_balance_by_user(user.id)

        message = "🖥️ **Cafe Account**\n\n"
        message += (
            f"👤 **User:** {user.username}\n"
            f"🟢 **Status:** {user.status}\n"
            f"💰 **Balance:** `{Utilities.format_money(balance, CURRENCY)}`\n"
        )
        session = storage.query_object("Session", user_id=user.id, status="Active")
        if session:
            remaining = session_engine.get_remaining_time(user.id, session.computer_id)
            cost = session_engine.calculate_session_cost(session.id)
            message += (
                f"\n⏱️ **Playing since:** {Utilities.get_date_str(session.start_time)}\n"
                f"💸 **Running cost:** `{Utilities.format_money(cost, CURRENCY)}`\n"
                f"⏳ **Remaining Time:** "
                f"{Utilities.parse_duration_to_human_readable(remaining.total_seconds())}"
            )

        await event.respond(message, parse_mode="markdown")


class JobManager:
    """
    A class to manage scheduled jobs using APScheduler.

    Two jobs run: the sweep that terminates sessions whose balance ran out, and
    the daily statistics report. Their definitions are kept in the Redis hash
    `jobs`, so a report hour changed from the chat survives restarts.
    """

    redis_conn = None
    scheduler = None
    SWEEP_JOB_ID = "sweep"
    REPORT_JOB_ID = "daily_report"

    def __init__(self):
        self.scheduler: AsyncIOScheduler = AsyncIOScheduler(timezone="UTC")

    async def save_job_to_redis(self, job_id, func_name, trigger, name):
        """
        Save job information to Redis. The job data is stored as a JSON object.
        :param job_id: The unique ID of the job.
        :param func_name: The name of the method to be executed
        :param trigger: The serialized trigger (see `serialize_trigger`)
        :param name: The name of the job.
        :return: None
        """

        job_data = {
            "job_id": job_id,
            "func_name": func_name,
            "trigger": trigger,
            "name": name,
        }
        await self.redis_conn.hset("jobs", job_id, json.dumps(job_data))
        logger.info("Job %s saved to Redis.", job_id)

    async def remove_job_from_redis(self, job_id):
        await self.redis_conn.hdel("jobs", job_id)
        logger.info("Job %s removed from Redis.", job_id)

    def deserialize_trigger(self, data):
        if data["type"] == "CronTrigger":
            return CronTrigger(hour=data["hour"], minute=data["min"], timezone="UTC")
        if data["type"] == "IntervalTrigger":
            return IntervalTrigger(seconds=data["seconds"])
        raise ValueError(f"Unknown trigger type {data['type']!r}")

    async def load_jobs_from_redis(self, job_data):
        """
        Load jobs from Redis and schedule them using the scheduler.
        :param job_data: A dictionary containing job data (job ID as key and job info as value).
        :return: None
        """

        for job_id, job_info in job_data.items():
            job_info = json.loads(job_info)
            func = getattr(self, job_info["func_name"], None)
            if not func:
                logger.warning("Dropping job %s: unknown function %s", job_id, job_info["func_name"])
                await self.remove_job_from_redis(job_id)
                continue
            self.add_job(
                func=func,
                trigger=self.deserialize_trigger(job_info["trigger"]),
                job_id=job_id,
                name=job_info["name"],
                new_job=False,
            )
            logger.info("Job %s reloaded from Redis.", job_id)

    async def sweep_exhausted_sessions(self):
        """
        Terminate the sessions whose running cost caught up with the balance,
        and tell the admin which ones were closed.
        """

        terminated = session_engine.terminate_exhausted_sessions(actor_id="scheduler")
        for session in terminated:
            message = (
                f"⛔ Session on `{session.computer_name}` for `{session.user_name}` "
                f"terminated: balance exhausted.\n"
                f"💰 Cost: `{Utilities.format_money(session.total_cost, CURRENCY)}`"
            )
            if session.unpaid_amount:
                message += f"\n⚠️ Unpaid: `{Utilities.format_money(session.unpaid_amount, CURRENCY)}`"
            await client.send_message(ADMIN_ID, message)

    async def send_daily_report(self):
        """Send the report of the last 7 days to the admin."""

        pdf_file_path = write_report_pdf()
        await client.send_file(
            ADMIN_ID,
            pdf_file_path,
            caption=f"📄 Daily report {Utilities.get_date_str(Utilities.utcnow())}",
        )

    async def schedule_sweep(self):
        self.add_job(
            self.sweep_exhausted_sessions,
            trigger=IntervalTrigger(seconds=SWEEP_INTERVAL_SECONDS),
            job_id=self.SWEEP_JOB_ID,
            name="sweep",
        )
        logger.info("Scheduled sweep every %s seconds.", SWEEP_INTERVAL_SECONDS)

    async def schedule_daily_report(self, hour=REPORT_HOUR):
        self.add_job(
            self.send_daily_report,
            trigger=CronTrigger(hour=hour, minute=0, timezone="UTC"),
            job_id=self.REPORT_JOB_ID,
            name="report",
        )
        logger.info("Scheduled daily report at %02d:00 UTC.", hour)

    def job_listener(self, event):
        """
        A listener to handle job execution events.
        Used to log job execution status.
        :param event: The event object. Note that this is an APScheduler event object.
        :return: None
        """

        if event.exception:
            logger.error("Job %s failed", event.job_id, exc_info=event.exception)
        else:
            logger.debug("Job %s executed successfully", event.job_id)

    def serialize_trigger(self, trigger):
        """
        Serialize the trigger object to JSON.
        This is a helper method to serialize the trigger object before saving it to Redis.
        :param trigger: The trigger object. (e.g., CronTrigger, IntervalTrigger)
        :return: A serialized JSON object.
        """

        if isinstance(trigger, IntervalTrigger):
            return {
                "type": "IntervalTrigger",
                "seconds": int(trigger.interval.total_seconds()),
            }
        elif isinstance(trigger, CronTrigger):
            return {
                "type": "CronTrigger",
                "hour": int(str(trigger.fields[5])),
                "min": int(str(trigger.fields[6])),
            }
        raise TypeError(f"Cannot serialize trigger of type {type(trigger).__name__}")

    def add_job(self, func, trigger, job_id=None, replace_existing=True, new_job=True, name=None):
        """
        Dynamically add jobs to the scheduler and save to Redis.

        :param func: The function to be executed by the job
        :param trigger: The trigger (IntervalTrigger or CronTrigger)
        :param job_id: An optional ID to uniquely identify the job
        :param replace_existing: Whether to replace an existing job with the same ID
        :param new_job: A flag to determine whether to save the job to Redis
        :param name: The name of the job
        """
        self.scheduler.add_job(
            func,
            trigger,
            id=job_id,
            replace_existing=replace_existing,
            name=name,
        )
        if new_job:
            asyncio.create_task(
                self.save_job_to_redis(
                    job_id, func.__name__, self.serialize_trigger(trigger), name
                )
            )

    async def schedule_jobs(self):
        """
        Initialize the Redis connection and schedule jobs.
        Handles the main event loop for the scheduler.
        :return: None
        """

        self.scheduler.add_listener(
            self.job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
        )
        await self.init_redis()
        self.scheduler.start()
        logger.info("Scheduler started.")

        job_data = await self.redis_conn.hgetall("jobs")
        if job_data:
            await self.load_jobs_from_redis(job_data)
        if self.scheduler.get_job(self.SWEEP_JOB_ID) is None:
            await self.schedule_sweep()
        if self.scheduler.get_job(self.REPORT_JOB_ID) is None:
            await self.schedule_daily_report()

        # Sessions may have run out while the bot was down
        await self.sweep_exhausted_sessions()

        # Keep the event loop running
        while True:
            await asyncio.sleep(1)

    async def init_redis(self):
        """
        Initialize the Redis connection.
        :return: None
        """

        if self.redis_conn is None:
            self.redis_conn = redis.Redis(
                host=REDIS_HOST, port=REDIS_PORT, db=REDIS_DB, decode_responses=True
            )
            await self.redis_conn.ping()
            logger.info("Connected to Redis at %s:%s", REDIS_HOST, REDIS_PORT)
