"""Payment and refund ledger.

The gateway is external: by the time ``create_transaction`` runs it has
already charged the user and returned its reference. Refunds are appended,
never edited; ``refunded_amount`` only grows through a guarded UPDATE and can
never pass the original amount.
"""

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from database import atomic
from errors import NotFound, RefundExceedsOriginal
from models import Event, PaymentDetails, Refund, Ticket, Transaction, utcnow
from schemas import RefundRequest, TransactionCreate
from ticket_utils import generate_refund_id, generate_transaction_id, unique_id

logger = logging.getLogger(__name__)


def _transaction_exists(db: Session, transaction_id: str) -> bool:
    return db.query(Transaction.id).filter(Transaction.id == transaction_id).first() is not None


def _refund_exists(db: Session, refund_id: str) -> bool:
    return db.query(Refund.id).filter(Refund.id == refund_id).first() is not None


def create_transaction(db: Session, user_id: str, data: TransactionCreate) -> Transaction:
    now = utcnow()
    with atomic(db):
        if db.query(Event.id).filter(Event.id == data.event_id).first() is None:
            raise NotFound("Event not found")

        transaction = Transaction(
            id=unique_id(generate_transaction_id, lambda c: _transaction_exists(db, c)),
            user_id=user_id,
            event_id=data.event_id,
            amount=data.amount,
            payment_method=data.payment_method.value,
            status="success",
            gateway_transaction_id=data.gateway_transaction_id,
            gateway_response=data.gateway_response,
            refund_status="none",
            refunded_amount=0,
            created_at=now,
            updated_at=now,
        )
        transaction.payment_details = PaymentDetails(
            card_last4=data.card_last4,
            card_brand=data.card_brand,
            upi_id=data.upi_id,
            bank_name=data.bank_name,
            wallet_name=data.wallet_name,
            payment_processor=data.payment_processor,
            receipt_url=data.receipt_url,
            created_at=now,
        )
        db.add(transaction)

    logger.info("Recorded transaction %s for user %s (%d)", transaction.id, user_id, data.amount)
    return transaction


def process_refund(db: Session, admin_id: str, transaction_id: str, data: RefundRequest) -> Refund:
    now = utcnow()
    with atomic(db):
        transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
        if transaction is None:
            raise NotFound("Transaction not found")
        if data.amount > transaction.amount - transaction.refunded_amount:
            raise RefundExceedsOriginal()

        result = db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.refunded_amount + data.amount <= Transaction.amount,
            )
            .values(refunded_amount=Transaction.refunded_amount + data.amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RefundExceedsOriginal()

        db.refresh(transaction)
        full = transaction.refunded_amount == transaction.amount
        transaction.refund_status = "full" if full else "partial"
        if full:
            transaction.status = "refunded"
            db.execute(
                update(Ticket)
                .where(Ticket.transaction_id == transaction_id, Ticket.status == "active")
                .values(status="refunded")
                .execution_options(synchronize_session=False)
            )

        refund = Refund(
            id=unique_id(generate_refund_id, lambda c: _refund_exists(db, c)),
            transaction_id=transaction_id,
            amount=data.amount,
            reason=data.reason,
            processed_by=admin_id,
            gateway_refund_id=data.gateway_refund_id,
            status="completed",
            created_at=now,
            updated_at=now,
        )
        db.add(refund)

    logger.info("Refunded %d on transaction %s (by %s)", data.amount, transaction_id, admin_id)
    return refund


def list_user_transactions(db: Session, user_id: str) -> list:
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc())
        .all()
    )
