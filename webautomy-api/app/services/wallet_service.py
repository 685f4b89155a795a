"""Prepaid wallet ledger.

Every balance mutation is a single conditional UPDATE evaluated by the
database, journalled in ``wallet_transactions`` inside the same transaction.
Callers never read the balance and write it back.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Wallet, WalletTransaction
from app.services.alert_service import alert_critical
from app.services.errors import InsufficientFundsError, InvalidInputError, LedgerUnavailableError

logger = get_logger("wallet_service")

Amount = Union[Decimal, int, str]

DEBIT = "debit"
CREDIT = "credit"


def to_amount(value: Amount) -> Decimal:
    """Coerce to a positive Decimal. Floats go through str() to avoid binary drift."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError(f"Amount must be positive, got {value!r}")
    return amount


class WalletService:
    def __init__(self, db: Session):
        self.db = db

    def _journal(self, org_id: UUID, kind: str, amount: Decimal, correlation_id: Optional[str], reason: str) -> None:
        self.db.add(
            WalletTransaction(
                org_id=org_id,
                kind=kind,
                amount=amount,
                correlation_id=correlation_id,
                reason=reason,
                created_at=datetime.now(timezone.utc),
            )
        )

    def debit_or_fail(self, org_id: UUID, amount: Amount, correlation_id: Optional[str] = None) -> bool:
        """Deduct ``amount`` or raise InsufficientFundsError / LedgerUnavailableError.

        The balance check and the decrement are one statement, so two
        concurrent debits can never both pass a balance that covers only one.
        """
        amount = to_amount(amount)
        stmt = (
            update(Wallet)
            .where(Wallet.org_id == org_id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                self.db.rollback()
                logger.info(
                    "Wallet debit rejected: insufficient balance",
                    extra={"context": {"org_id": str(org_id), "amount": str(amount), "correlation_id": correlation_id}},
                )
                raise InsufficientFundsError()
            self._journal(org_id, DEBIT, amount, correlation_id, "Service fee")
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Wallet debit failed",
                extra={"context": {"org_id": str(org_id), "amount": str(amount), "error": str(exc)}},
            )
            raise LedgerUnavailableError("Wallet deduction failed", detail=str(exc)) from exc

        logger.info(
            "Wallet debited",
            extra={"context": {"org_id": str(org_id), "amount": str(amount), "correlation_id": correlation_id}},
        )
        return True

    def credit(
        self,
        org_id: UUID,
        amount: Amount,
        correlation_id: Optional[str] = None,
        reason: str = "Refund",
    ) -> bool:
        """Add ``amount`` back. Best effort: failures are logged and alerted, never raised.

        A failed credit leaves a debit journal row without its matching credit;
        the reconciliation sweep pairs rows by ``correlation_id``.
        """
        amount = to_amount(amount)
        stmt = (
            update(Wallet)
            .where(Wallet.org_id == org_id)
            .values(balance=Wallet.balance + amount, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        context = {"org_id": str(org_id), "amount": str(amount), "correlation_id": correlation_id, "reason": reason}
        try:
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                self.db.rollback()
                logger.error("Refund failed: wallet not found", extra={"context": context})
                alert_critical("Wallet refund failed, reconciliation needed", {**context, "error": "wallet_not_found"})
                return False
            self._journal(org_id, CREDIT, amount, correlation_id, reason)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Refund failed", extra={"context": {**context, "error": str(exc)}})
            alert_critical("Wallet refund failed, reconciliation needed", {**context, "error": str(exc)})
            return False

        logger.info("Wallet credited", extra={"context": context})
        return True

    def get_balance(self, org_id: UUID) -> Optional[Decimal]:
        balance = self.db.execute(select(Wallet.balance).where(Wallet.org_id == org_id)).scalar_one_or_none()
        if balance is None:
            return None
        return Decimal(balance)
