from datetime import timedelta
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel

ACTIVE_ONLY = text("status = 'Active'")


class SessionStatus:
    ACTIVE = "Active"
    COMPLETED = "Completed"
    TERMINATED = "Terminated"
    ALL = (ACTIVE, COMPLETED, TERMINATED)
    CLOSED = (COMPLETED, TERMINATED)


class Session(BaseModel, Base):
    """
    One timed occupancy of a computer by a user, billed when it is closed.

    A session is created Active and closed exactly once, either Completed
    (ended normally) or Terminated (stopped by staff or the exhausted-balance
    sweep). Closing fills in end time, duration and cost; nothing changes after.
    The partial unique indexes keep at most one Active session per computer and
    per user at the database level.

    Attributes:
        user_id (str): The customer using the computer.
        computer_id (str): The computer in use.
        start_time (datetime): UTC start instant.
        end_time (datetime): UTC close instant, None while Active.
        duration_seconds (int): Elapsed whole seconds, 0 while Active.
        total_cost (Decimal): Billed amount, 0 while Active.
        unpaid_amount (Decimal): Part of the cost that could not be collected
            when a terminated session outran the balance.
        status (str): Active, Completed or Terminated.
        notes (str): Close reason or staff notes.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index(
            "uq_sessions_active_computer",
            "computer_id",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
        Index(
            "uq_sessions_active_user",
            "user_id",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
    )

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    computer_id = Column(
        String(36), ForeignKey("computers.id"), nullable=False, index=True
    )
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, default=None)
    duration_seconds = Column(Integer, nullable=False, default=0)
    total_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    unpaid_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status = Column(
        Text,
        CheckConstraint("status IN ('Active', 'Completed', 'Terminated')"),
        nullable=False,
        default=SessionStatus.ACTIVE,
    )
    notes = Column(Text, default=None)

    # Relationships
    user = relationship("User", back_populates="sessions")
    computer = relationship("Computer", back_populates="sessions")
    transactions = relationship("Transaction", back_populates="session")

    @property
    def duration(self):
        return timedelta(seconds=self.duration_seconds or 0)

    @property
    def is_active(self):
        return self.status == SessionStatus.ACTIVE
