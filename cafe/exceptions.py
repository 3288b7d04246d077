"""
Error taxonomy of the billing core.

Every error raised by a service derives from `CafeError`. The five families
(`NotFound`, `Conflict`, `InsufficientFunds`, `InvalidArgument`, `Unexpected`)
tell a boundary layer how to answer without reading the message; the
`http_status` hint carries the usual mapping.
"""


class CafeError(Exception):
    """Base class for all billing-core errors."""

    http_status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


# --- Not found ---------------------------------------------------------------


class NotFound(CafeError):
    http_status = 404


class UserNotFound(NotFound):
    def __init__(self, user_id):
        super().__init__(f"User with ID {user_id} was not found.")
        self.user_id = user_id


class ComputerNotFound(NotFound):
    def __init__(self, computer_id):
        super().__init__(f"Computer with ID {computer_id} was not found.")
        self.computer_id = computer_id


class SessionNotFound(NotFound):
    def __init__(self, session_id):
        super().__init__(f"Session with ID {session_id} was not found.")
        self.session_id = session_id


class AccountNotFound(NotFound):
    def __init__(self, account_id=None, user_id=None):
        if user_id is not None:
            message = f"Account for user with ID {user_id} was not found."
        else:
            message = f"Account with ID {account_id} was not found."
        super().__init__(message)
        self.account_id = account_id
        self.user_id = user_id


class NoActiveSession(NotFound):
    def __init__(self, user_id, computer_id):
        super().__init__(
            f"No active session found for user {user_id} on computer {computer_id}."
        )
        self.user_id = user_id
        self.computer_id = computer_id


# --- Conflict ----------------------------------------------------------------


class Conflict(CafeError):
    http_status = 409


class ComputerNotAvailable(Conflict):
    def __init__(self, computer_id, status=None):
        message = f"Computer with ID {computer_id} is not available."
        if status:
            message = f"Computer with ID {computer_id} is not available ({status})."
        super().__init__(message)
        self.computer_id = computer_id
        self.status = status


class SessionNotActive(Conflict):
    def __init__(self, session_id, status):
        super().__init__(f"Session with ID {session_id} is not active ({status}).")
        self.session_id = session_id
        self.status = status


class DuplicateComputer(Conflict):
    def __init__(self, field_name, value):
        super().__init__(f"Computer with {field_name} '{value}' already exists.")
        self.field_name = field_name
        self.value = value


class DuplicateUser(Conflict):
    def __init__(self, field_name, value):
        super().__init__(f"User with {field_name} '{value}' already exists.")
        self.field_name = field_name
        self.value = value


class TelegramAlreadyLinked(Conflict):
    def __init__(self, user_id):
        super().__init__(
            f"User with ID {user_id} is already linked to another Telegram account."
        )
        self.user_id = user_id


class ConflictActiveSession(Conflict):
    """An Active session stands in the way of the requested change."""


class AlreadyActiveSession(ConflictActiveSession):
    def __init__(self, user_id):
        super().__init__(f"User with ID {user_id} already has an active session.")
        self.user_id = user_id


class ComputerInUse(ConflictActiveSession):
    def __init__(self, computer_id):
        super().__init__(f"Computer with ID {computer_id} has an active session.")
        self.computer_id = computer_id


# --- Insufficient funds ------------------------------------------------------


class InsufficientFunds(CafeError):
    http_status = 402


class InsufficientBalance(InsufficientFunds):
    def __init__(self, current_balance, required_amount):
        super().__init__(
            "Account has insufficient balance. "
            f"Current balance: {current_balance}, Required: {required_amount}"
        )
        self.current_balance = current_balance
        self.required_amount = required_amount


# --- Invalid argument --------------------------------------------------------


class InvalidArgument(CafeError, ValueError):
    http_status = 400


class InvalidAmount(InvalidArgument):
    def __init__(self, amount, message=None):
        super().__init__(message or f"Amount must be greater than zero, got {amount}.")
        self.amount = amount


class InvalidStatus(InvalidArgument):
    def __init__(self, status, allowed=()):
        message = f"Invalid status '{status}'."
        if allowed:
            message += f" Expected one of: {', '.join(allowed)}."
        super().__init__(message)
        self.status = status


class InvalidDateRange(InvalidArgument):
    def __init__(self, start, end):
        super().__init__(f"Start date {start} must not be after end date {end}.")
        self.start = start
        self.end = end


# --- Unexpected --------------------------------------------------------------


class Unexpected(CafeError):
    http_status = 500


class StorageError(Unexpected):
    """The database refused or failed an operation. The cause is chained."""


class OperationTimeout(Unexpected):
    def __init__(self, timeout):
        super().__init__(f"Operation exceeded its {timeout}s deadline and was rolled back.")
        self.timeout = timeout
