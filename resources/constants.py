"""
Runtime configuration for the cafe billing bot.

Values come from the environment; a `.env` file next to the working directory is
loaded first so local deployments can keep their secrets out of the shell profile.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Telegram
API_ID = int(os.getenv("API_ID", "0"))
API_HASH = os.getenv("API_HASH", "")
BOT_TOKEN = os.getenv("BOT_TOKEN", "")
ADMIN_ID = int(os.getenv("ADMIN_ID", "0"))
TG_BOT_USERNAME = os.getenv("TG_BOT_USERNAME", "")

# Display
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Ho_Chi_Minh")
CURRENCY = os.getenv("CURRENCY", "VND")

# Storage
DATABASE_URL = os.getenv("CAFE_DATABASE_URL", "sqlite:///cafe-database.db")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

# Logging
LOG_FILE = os.getenv("LOG_FILE", "cafe.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Scheduled jobs
REPORT_HOUR = int(os.getenv("REPORT_HOUR", "23"))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

# Deadline applied to every core operation started from the bot, in seconds.
# Unset means operations may run as long as the database needs.
OPERATION_TIMEOUT_SECONDS = (
    float(os.environ["OPERATION_TIMEOUT_SECONDS"])
    if os.getenv("OPERATION_TIMEOUT_SECONDS")
    else None
)
