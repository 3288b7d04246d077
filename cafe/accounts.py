from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel


class Account(BaseModel, Base):
    """
    Prepaid balance owned by exactly one user.

    The balance is only ever changed through the guarded storage primitives
    (`UnitOfWork.credit_balance` / `UnitOfWork.debit_balance`), never by
    assigning the attribute and flushing.

    Attributes:
        user_id (str): Owning user, unique.
        balance (Decimal): Current balance, two decimals, never negative.
        last_deposit_date (datetime): Time of the last credit.
        last_usage_date (datetime): Time of the last debit.
    """

    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)

    user_id = Column(
        String(36), ForeignKey("users.id"), unique=True, nullable=False
    )
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    last_deposit_date = Column(DateTime, default=None)
    last_usage_date = Column(DateTime, default=None)

    # Relationships
    user = relationship("User", back_populates="account")
    transactions = relationship("Transaction", back_populates="account")
