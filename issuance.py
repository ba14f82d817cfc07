"""Ticket issuance: validate, reserve inventory, create tickets, spend the discount.

Everything from the first read to the final insert runs in one transaction;
any failure rolls the whole purchase back.
"""

from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import atomic
from errors import InvalidTransaction, NotFound, TicketTypeNotFound
from inventory import (
    calculate_discount,
    check_capacity,
    check_per_user_limit,
    consume_discount,
    find_applicable_discount,
    reserve_inventory,
)
from models import DiscountUsage, Ticket, TicketType, Transaction, utcnow
from schemas import PurchaseResult, PurchaseTicketRequest
from ticket_utils import generate_ticket_id, generate_ticket_qr, unique_id

logger = logging.getLogger(__name__)


def _ticket_id_exists(db: Session, ticket_id: str) -> bool:
    return db.query(Ticket.id).filter(Ticket.id == ticket_id).first() is not None


def _qr_code_exists(db: Session, qr_code: str) -> bool:
    return db.query(Ticket.id).filter(Ticket.qr_code == qr_code).first() is not None


def _load_ticket_type(db: Session, ticket_type_id: int, event_id: int) -> TicketType:
    ticket_type = (
        db.query(TicketType)
        .filter(
            TicketType.id == ticket_type_id,
            TicketType.event_id == event_id,
            TicketType.is_active == True,
        )
        .with_for_update()
        .first()
    )
    if ticket_type is None:
        raise TicketTypeNotFound()
    return ticket_type


def _load_paid_transaction(db: Session, transaction_id: str, user_id: str) -> Transaction:
    transaction = (
        db.query(Transaction)
        .filter(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id,
            Transaction.status == "success",
        )
        .first()
    )
    if transaction is None:
        raise NotFound("Transaction not found")
    return transaction


def _tickets_on_transaction(db: Session, transaction_id: str) -> int:
    return db.query(func.count(Ticket.id)).filter(Ticket.transaction_id == transaction_id).scalar()


def purchase_ticket(db: Session, user_id: str, request: PurchaseTicketRequest) -> PurchaseResult:
    """Issue ``request.quantity`` tickets against an already recorded payment"""
    now = utcnow()
    with atomic(db):
        ticket_type = _load_ticket_type(db, request.ticket_type_id, request.event_id)
        transaction = _load_paid_transaction(db, request.transaction_id, user_id)
        if _tickets_on_transaction(db, transaction.id):
            raise InvalidTransaction("already_used")

        check_capacity(ticket_type, request.quantity)
        check_per_user_limit(db, ticket_type, user_id, request.quantity)

        discount = None
        discount_amount = 0
        if request.discount_code:
            discount = find_applicable_discount(
                db, request.discount_code, ticket_type.id, request.event_id, request.quantity, now
            )
            discount_amount = calculate_discount(ticket_type.price, discount).discount_amount
        unit_price = ticket_type.price - discount_amount
        if transaction.amount < unit_price * request.quantity:
            raise InvalidTransaction("insufficient_amount")

        reserve_inventory(db, ticket_type.id, request.quantity)

        ticket_ids = []
        for _ in range(request.quantity):
            ticket_id = unique_id(generate_ticket_id, lambda c: _ticket_id_exists(db, c), ticket_ids)
            qr_code = unique_id(lambda: generate_ticket_qr(ticket_id), lambda c: _qr_code_exists(db, c))
            db.add(Ticket(
                id=ticket_id,
                ticket_type_id=ticket_type.id,
                event_id=request.event_id,
                user_id=user_id,
                transaction_id=request.transaction_id,
                status="active",
                qr_code=qr_code,
                purchase_date=now,
            ))
            ticket_ids.append(ticket_id)

        # tickets must exist before usage rows reference them
        db.flush()

        # counted again under the write lock
        check_per_user_limit(db, ticket_type, user_id, 0)
        if _tickets_on_transaction(db, transaction.id) != request.quantity:
            raise InvalidTransaction("already_used")

        if discount is not None:
            for ticket_id in ticket_ids:
                db.add(DiscountUsage(discount_id=discount.id, ticket_id=ticket_id, user_id=user_id, used_at=now))
            consume_discount(db, discount.id, request.quantity)

    logger.info(
        "User %s bought %d x ticket type %s (%s)",
        user_id, len(ticket_ids), request.ticket_type_id, ", ".join(ticket_ids),
    )
    return PurchaseResult(
        ticket_ids=ticket_ids,
        unit_price=unit_price,
        discount_amount=discount_amount,
        total_amount=unit_price * len(ticket_ids),
    )


def list_user_tickets(db: Session, user_id: str, status: Optional[str] = "active") -> list:
    """Tickets owned by a user with their ticket type, newest first"""
    query = (
        db.query(Ticket, TicketType)
        .join(TicketType, Ticket.ticket_type_id == TicketType.id)
        .filter(Ticket.user_id == user_id)
    )
    if status:
        query = query.filter(Ticket.status == status)
    rows = query.order_by(Ticket.purchase_date.desc()).all()
    return [
        {
            "id": ticket.id,
            "ticket_type_id": ticket.ticket_type_id,
            "event_id": ticket.event_id,
            "user_id": ticket.user_id,
            "transaction_id": ticket.transaction_id,
            "status": ticket.status,
            "qr_code": ticket.qr_code,
            "purchase_date": ticket.purchase_date,
            "check_in_date": ticket.check_in_date,
            "checked_in_by": ticket.checked_in_by,
            "ticket_type_name": ticket_type.name,
            "ticket_type_description": ticket_type.description,
            "price": ticket_type.price,
        }
        for ticket, ticket_type in rows
    ]


def get_owned_ticket(db: Session, ticket_id: str, user_id: str) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id, Ticket.user_id == user_id).first()
    if ticket is None:
        raise NotFound("Ticket not found")
    return ticket
