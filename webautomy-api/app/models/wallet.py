import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base

MONEY = Numeric(12, 2)


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="wallet_balance_non_negative"),)

    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), primary_key=True)
    balance = Column(MONEY, nullable=False, default=0)
    updated_at = Column(TIMESTAMP(timezone=True))

    organization = relationship("Organization", back_populates="wallet")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    kind = Column(Text, nullable=False)  # debit, credit
    amount = Column(MONEY, nullable=False)
    correlation_id = Column(Text, index=True)
    reason = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
