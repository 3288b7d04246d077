from sqlalchemy import CheckConstraint, Column, Text
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel


class UserRole:
    CUSTOMER = "Customer"
    STAFF = "Staff"
    ADMIN = "Admin"
    ALL = (CUSTOMER, STAFF, ADMIN)


class UserStatus:
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    ALL = (ACTIVE, SUSPENDED)


class User(BaseModel, Base):
    """
    A registered cafe user. Identity fields (username, email) are fixed after
    registration; profile fields and status may change.

    Attributes:
        uuid (Text): Secret token used to link a Telegram account to the user.
        username (Text): Unique login and display name.
        email (Text): Unique contact address.
        full_name (Text): Profile name.
        phone_number (Text): Optional phone number.
        role (Text): Customer, Staff or Admin.
        status (Text): Active or Suspended.
    """

    __tablename__ = "users"

    uuid = Column(Text, unique=True, default=None)
    username = Column(Text, unique=True, nullable=False)
    email = Column(Text, unique=True, nullable=False)
    full_name = Column(Text, nullable=False, default="")
    phone_number = Column(Text, default=None)
    role = Column(
        Text,
        CheckConstraint("role IN ('Customer', 'Staff', 'Admin')"),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
    status = Column(
        Text,
        CheckConstraint("status IN ('Active', 'Suspended')"),
        nullable=False,
        default=UserStatus.ACTIVE,
    )

    # Relationships
    account = relationship("Account", back_populates="user", uselist=False)
    sessions = relationship("Session", back_populates="user")
    telegram_user = relationship("TelegramUser", back_populates="user")
