"""
Billing core of the internet cafe: users, prepaid accounts, computers and the
timed sessions that bill them.

Key Components:
----------------
1. **DBStorage**: The storage engine that interacts with the database.
   - Initialized and reloaded at import, bound to `CAFE_DATABASE_URL`.

2. **Services** (see `cafe.services`): built once over the shared storage.
   - `ledger`: account balances and transactions.
   - `registry`: computer inventory and usage states.
   - `session_engine`: starting, ending and terminating sessions.
   - `statistics`: revenue and usage figures.
   - `users`: registration, status and Telegram linking.
   - `audit`: the audit event sink every service reports to.

The Telegram bot that drives these services lives in `cafe.commands`; it is not
imported here so the core can be used without a bot.
"""

import logging

from resources.constants import DATABASE_URL, LOG_FILE, LOG_LEVEL

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=LOG_LEVEL,
    filename=LOG_FILE,
    encoding="utf-8",
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

from cafe.engine.db_engine import DBStorage

# Initialization of DBStorage
storage = DBStorage(DATABASE_URL)
storage.reload()

from cafe.services.audit import AuditLogger
from cafe.services.computers import ComputerRegistry
from cafe.services.ledger import LedgerService
from cafe.services.session_engine import SessionEngine
from cafe.services.statistics import StatisticsReader
from cafe.services.users import UserService

audit = AuditLogger()
ledger = LedgerService(storage, audit)
registry = ComputerRegistry(storage, audit)
session_engine = SessionEngine(storage, registry, ledger, audit)
statistics = StatisticsReader(storage)
users = UserService(storage, ledger, audit)
