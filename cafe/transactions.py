from sqlalchemy import CheckConstraint, Column, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from cafe.baseModel import Base, BaseModel


class TransactionType:
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    COMPUTER_USAGE = "ComputerUsage"
    ALL = (DEPOSIT, WITHDRAWAL, COMPUTER_USAGE)


class PaymentMethod:
    CASH = "Cash"
    CARD = "Card"
    BANK_TRANSFER = "BankTransfer"
    E_WALLET = "EWallet"
    ALL = (CASH, CARD, BANK_TRANSFER, E_WALLET)


class Transaction(BaseModel, Base):
    """
    Immutable ledger entry. Rows are appended by the ledger and never updated
    or deleted; the creation timestamp is the inherited `created_at`.

    Attributes:
        account_id (str): The account whose balance moved.
        user_id (str): Optional user the movement is attributed to.
        session_id (str): Session billed, for ComputerUsage entries.
        amount (Decimal): Signed amount, positive credits and negative debits.
        type (str): Deposit, Withdrawal or ComputerUsage.
        payment_method (str): How a deposit was paid, if known.
        reference_number (str): External payment reference, if any.
        description (str): Human readable description.
    """

    __tablename__ = "transactions"

    account_id = Column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), default=None)
    session_id = Column(
        String(36), ForeignKey("sessions.id"), default=None, index=True
    )
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(
        Text,
        CheckConstraint(
            "type IN ('Deposit', 'Withdrawal', 'ComputerUsage')"
        ),
        nullable=False,
    )
    payment_method = Column(
        Text,
        CheckConstraint(
            "payment_method IS NULL OR "
            "payment_method IN ('Cash', 'Card', 'BankTransfer', 'EWallet')"
        ),
        default=None,
    )
    reference_number = Column(Text, default=None)
    description = Column(Text, default=None)

    # Relationships
    account = relationship("Account", back_populates="transactions")
    session = relationship("Session", back_populates="transactions")
