from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, Text
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel


class UsageStatus:
    AVAILABLE = "Available"
    IN_USE = "InUse"
    MAINTENANCE = "Maintenance"
    ALL = (AVAILABLE, IN_USE, MAINTENANCE)

    # Allowed transitions of the usage state machine.
    TRANSITIONS = {
        AVAILABLE: (IN_USE, MAINTENANCE),
        IN_USE: (AVAILABLE,),
        MAINTENANCE: (AVAILABLE,),
    }


class Computer(BaseModel, Base):
    """
    A terminal that can be rented by the hour.

    `usage_status` is the domain state (Available / InUse / Maintenance); the
    inherited `lifecycle` flag marks a computer removed from the inventory.

    Attributes:
        name (Text): Unique display name, e.g. "PC-01".
        ip_address (Text): Unique network address.
        specifications (Text): Free-form hardware description.
        location (Text): Where the computer stands.
        hourly_rate (Decimal): Price of one hour of use.
        usage_status (Text): Current usage state.
        last_used_date (datetime): When it last entered InUse.
        last_maintenance_date (datetime): When it last entered Maintenance.
    """

    __tablename__ = "computers"
    __table_args__ = (
        CheckConstraint("hourly_rate >= 0", name="hourly_rate_non_negative"),
    )

    name = Column(Text, unique=True, nullable=False)
    ip_address = Column(Text, unique=True, nullable=False)
    specifications = Column(Text, default="")
    location = Column(Text, default="")
    hourly_rate = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    usage_status = Column(
        Text,
        CheckConstraint("usage_status IN ('Available', 'InUse', 'Maintenance')"),
        nullable=False,
        default=UsageStatus.AVAILABLE,
    )
    last_used_date = Column(DateTime, default=None)
    last_maintenance_date = Column(DateTime, default=None)

    # Relationships
    sessions = relationship("Session", back_populates="computer")
