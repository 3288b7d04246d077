import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select

from cafe.exceptions import DuplicateUser, InvalidStatus, TelegramAlreadyLinked, UserNotFound
from cafe.misc import Utilities
from cafe.telegram_users import TelegramUser
from cafe.users import User, UserRole, UserStatus

logger = logging.getLogger(__name__)


@dataclass
class UserView:
    id: str
    uuid: str
    username: str
    email: str
    full_name: str
    phone_number: Optional[str]
    role: str
    status: str
    created_at: datetime

    @classmethod
    def from_model(cls, user):
        return cls(
            id=user.id,
            uuid=user.uuid,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            phone_number=user.phone_number,
            role=user.role,
            status=user.status,
            created_at=user.created_at,
        )


class UserService:
    """
    Registration and status of cafe users, and the link between a user and
    the Telegram account the bot talks to.
    """

    def __init__(self, storage, ledger, audit, clock=Utilities.utcnow):
        self.storage = storage
        self.ledger = ledger
        self.audit = audit
        self.clock = clock

    @staticmethod
    def _load(uow, user_id):
        user = uow.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def register_user(
        self,
        username,
        email,
        full_name="",
        role=UserRole.CUSTOMER,
        phone_number=None,
        actor_id=None,
        timeout=None,
    ) -> UserView:
        """
        Create a user together with its (empty) account.

        :raises DuplicateUser: the username or email is taken, including by a
            cancelled user.
        :raises InvalidStatus: unknown role.
        """
        if role not in UserRole.ALL:
            raise InvalidStatus(role, UserRole.ALL)

        with self.storage.unit_of_work(timeout) as uow:
            clash = uow.first(
                select(User).where(or_(User.username == username, User.email == email))
            )
            if clash is not None:
                if clash.username == username:
                    raise DuplicateUser("username", username)
                raise DuplicateUser("email", email)

            now = self.clock()
            user = User(
                uuid=str(uuid.uuid4()),
                username=username,
                email=email,
                full_name=full_name or "",
                phone_number=phone_number,
                role=role,
                status=UserStatus.ACTIVE,
            )
            uow.add(user, actor_id, now)
            uow.flush()
            self.ledger.create_account(user.id, actor_id=actor_id, uow=uow)
            uow.on_commit(
                self.audit.log_activity,
                "UserRegistered",
                "User",
                user.id,
                actor_id,
                now,
                f"User {username} registered as {role}",
            )
            logger.info("Registered user %s (%s)", username, user.id)
            return UserView.from_model(user)

    def get_user(self, user_id) -> UserView:
        with self.storage.unit_of_work() as uow:
            return UserView.from_model(self._load(uow, user_id))

    def get_user_by_username(self, username) -> UserView:
        with self.storage.unit_of_work() as uow:
            user = uow.get_user_by_username(username)
            if user is None:
                raise UserNotFound(username)
            return UserView.from_model(user)

    def set_status(self, user_id, status, actor_id=None, timeout=None) -> UserView:
        if status not in UserStatus.ALL:
            raise InvalidStatus(status, UserStatus.ALL)
        with self.storage.unit_of_work(timeout) as uow:
            user = self._load(uow, user_id)
            if user.status == status:
                return UserView.from_model(user)
            previous, user.status = user.status, status
            now = self.clock()
            uow.add(user, actor_id, now)
            uow.flush()
            uow.on_commit(
                self.audit.log_activity,
                "UserStatusChanged",
                "User",
                user.id,
                actor_id,
                now,
                f"{previous} -> {status}",
            )
            logger.info("User %s: %s -> %s", user.username, previous, status)
            return UserView.from_model(user)

    def link_telegram(
        self, user_uuid, tg_user_id, tg_username=None, tg_first_name=None, timeout=None
    ) -> UserView:
        """
        Attach a Telegram account to the user owning the `user_uuid` token.
        Linking the same account again refreshes its names.

        :raises UserNotFound: no user holds the token.
        :raises TelegramAlreadyLinked: the user is linked to another account.
        """
        with self.storage.unit_of_work(timeout) as uow:
            user = uow.first(uow.query(User).where(User.uuid == user_uuid))
            if user is None:
                raise UserNotFound(user_uuid)

            now = self.clock()
            linked = uow.first(
                uow.query(TelegramUser).where(TelegramUser.user_id == user.id)
            )
            if linked is not None and linked.tg_user_id != tg_user_id:
                raise TelegramAlreadyLinked(user.id)

            tg_user = linked or uow.first(
                uow.query(TelegramUser).where(TelegramUser.tg_user_id == tg_user_id)
            )
            if tg_user is None:
                tg_user = TelegramUser(tg_user_id=tg_user_id, user_id=user.id)
            tg_user.user_id = user.id
            tg_user.tg_username = tg_username
            tg_user.tg_first_name = tg_first_name
            uow.add(tg_user, user.id, now)
            uow.flush()
            logger.info("Linked Telegram account %s to user %s", tg_user_id, user.username)
            return UserView.from_model(user)

    def get_user_by_telegram(self, tg_user_id) -> UserView:
        with self.storage.unit_of_work() as uow:
            tg_user = uow.first(
                uow.query(TelegramUser).where(TelegramUser.tg_user_id == tg_user_id)
            )
            if tg_user is None:
                raise UserNotFound(tg_user_id)
            return UserView.from_model(self._load(uow, tg_user.user_id))
