"""
Business services of the billing core.

- `audit.py`: `AuditLogger`, the fire-and-forget domain event sink.
- `ledger.py`: `LedgerService`, account balances and the transaction history.
- `computers.py`: `ComputerRegistry`, inventory and the usage state machine.
- `session_engine.py`: `SessionEngine`, starting, closing and pricing sessions.
- `statistics.py`: `StatisticsReader`, read-only revenue and usage aggregation.
- `reports.py`: `ReportRenderer`, HTML statistics report.
- `users.py`: `UserService`, registration, status and Telegram linking.

Every mutating operation runs in one `UnitOfWork` and takes an explicit
`actor_id` naming who asked for it.
"""
