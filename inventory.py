"""Inventory and discount ledger.

Checks run against rows read inside the caller's transaction; the counters
themselves only change through the conditional UPDATEs in
``reserve_inventory`` and ``consume_discount``, so two concurrent purchases
can never both spend the last unit or the last discount use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from errors import InsufficientInventory, InvalidDiscount, PerUserLimitExceeded, TicketTypeNotFound
from models import DiscountCode, Ticket, TicketType, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountQuote:
    original_price: int
    discount_amount: int
    discounted_price: int


def calculate_discount(price: int, discount: DiscountCode) -> DiscountQuote:
    """Per-ticket discount; percentages round half up, flat amounts never go below zero"""
    if discount.discount_type == "percentage":
        amount = (price * discount.discount_value + 50) // 100
    else:
        amount = discount.discount_value
    amount = min(amount, price)
    return DiscountQuote(original_price=price, discount_amount=amount, discounted_price=price - amount)


def check_capacity(ticket_type: TicketType, quantity: int) -> None:
    if ticket_type.available_quantity is not None and quantity > ticket_type.available_quantity:
        raise InsufficientInventory()


def check_per_user_limit(db: Session, ticket_type: TicketType, user_id: str, quantity: int) -> None:
    """Tickets already held by the user (active or used) count toward max_per_user"""
    if not ticket_type.max_per_user:
        return
    held = (
        db.query(func.count(Ticket.id))
        .filter(
            Ticket.ticket_type_id == ticket_type.id,
            Ticket.user_id == user_id,
            Ticket.status.in_(("active", "used")),
        )
        .scalar()
    )
    if held + quantity > ticket_type.max_per_user:
        raise PerUserLimitExceeded(ticket_type.max_per_user)


def find_applicable_discount(
    db: Session,
    code: str,
    ticket_type_id: int,
    event_id: int,
    quantity: int = 1,
    now: Optional[datetime] = None,
) -> DiscountCode:
    """Load a usable discount code or raise InvalidDiscount with the reason it is not"""
    now = now or utcnow()
    discount = db.query(DiscountCode).filter(DiscountCode.code == code).first()
    if discount is None:
        raise InvalidDiscount("not_found")
    if not discount.is_active:
        raise InvalidDiscount("inactive")
    if discount.start_date is not None and discount.start_date > now:
        raise InvalidDiscount("not_started")
    if discount.end_date is not None and discount.end_date < now:
        raise InvalidDiscount("expired")
    if discount.ticket_type_id is not None and discount.ticket_type_id != ticket_type_id:
        raise InvalidDiscount("wrong_ticket_type")
    if discount.event_id is not None and discount.event_id != event_id:
        raise InvalidDiscount("wrong_event")
    if discount.max_uses is not None and discount.current_uses + quantity > discount.max_uses:
        raise InvalidDiscount("usage_exhausted")
    return discount


def reserve_inventory(db: Session, ticket_type_id: int, quantity: int) -> None:
    """Decrement bounded inventory in place; unlimited types are left alone"""
    result = db.execute(
        update(TicketType)
        .where(
            TicketType.id == ticket_type_id,
            TicketType.available_quantity.is_not(None),
            TicketType.available_quantity >= quantity,
        )
        .values(available_quantity=TicketType.available_quantity - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return
    remaining = db.query(TicketType.available_quantity).filter(TicketType.id == ticket_type_id).first()
    if remaining is not None and remaining[0] is None:
        return
    logger.info("Inventory exhausted for ticket type %s (wanted %d)", ticket_type_id, quantity)
    raise InsufficientInventory()


def consume_discount(db: Session, discount_id: int, quantity: int) -> None:
    result = db.execute(
        update(DiscountCode)
        .where(
            DiscountCode.id == discount_id,
            or_(
                DiscountCode.max_uses.is_(None),
                DiscountCode.current_uses + quantity <= DiscountCode.max_uses,
            ),
        )
        .values(current_uses=DiscountCode.current_uses + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Discount %s ran out of uses (wanted %d)", discount_id, quantity)
        raise InvalidDiscount("usage_exhausted")


def validate_discount_code(db: Session, code: str, ticket_type_id: int, event_id: int) -> dict:
    """Preview what a discount code would take off one ticket"""
    discount = find_applicable_discount(db, code, ticket_type_id, event_id)
    ticket_type = db.query(TicketType).filter(TicketType.id == ticket_type_id).first()
    if ticket_type is None:
        raise TicketTypeNotFound("Ticket type not found")
    quote = calculate_discount(ticket_type.price, discount)
    return {
        "code": discount.code,
        "description": discount.description,
        "discount_type": discount.discount_type,
        "discount_value": discount.discount_value,
        "discount_amount": quote.discount_amount,
        "original_price": quote.original_price,
        "discounted_price": quote.discounted_price,
    }
