from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel


class TelegramUser(BaseModel, Base):
    """
    TelegramUser class to link a Telegram account to a cafe user, so the
    customer can ask the bot for their balance and remaining time.
    """

    __tablename__ = "telegram_users"

    tg_user_id = Column(
        Integer,
        nullable=False,
        unique=True,
        doc="Telegram ID of the account.",
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        doc="Foreign key linking to the cafe user.",
    )
    tg_username = Column(
        Text, default=None, doc="Optional Telegram username of the user."
    )
    tg_first_name = Column(
        Text, default=None, doc="Optional first name of the Telegram user."
    )

    # Relationships
    user = relationship(
        "User",
        back_populates="telegram_user",
        doc="Relationship linking TelegramUser to the User model.",
    )
