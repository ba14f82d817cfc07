"""Admin-side event management: events, ticket types, discount codes, stats."""

from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import atomic
from errors import BusinessRuleViolation, NotFound, ValidationFailed
from models import (
    Attendance,
    DiscountCode,
    Event,
    EventCategory,
    EventCoordinator,
    Ticket,
    TicketType,
    Transaction,
    event_category_map,
    utcnow,
)
from schemas import DiscountCodeCreate, EventCategoryCreate, EventCreate, EventUpdate, TicketTypeCreate

logger = logging.getLogger(__name__)


def get_event(db: Session, event_id: int) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFound("Event not found")
    return event


def list_events(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    upcoming: bool = False,
    category_id: Optional[int] = None,
) -> dict:
    """One page of events, newest first; optionally filtered by name, category or start date"""
    query = db.query(Event)
    if category_id is not None:
        query = query.join(event_category_map, event_category_map.c.event_id == Event.id).filter(
            event_category_map.c.category_id == category_id
        )
    if search:
        query = query.filter(Event.name.ilike(f"%{search}%"))
    if upcoming:
        query = query.filter(Event.start_date >= utcnow())
    total = query.count()
    events = (
        query.order_by(Event.start_date.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "events": events,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


def _load_categories(db: Session, category_ids) -> list:
    wanted = set(category_ids)
    if not wanted:
        return []
    categories = db.query(EventCategory).filter(EventCategory.id.in_(wanted)).all()
    missing = wanted - {c.id for c in categories}
    if missing:
        raise ValidationFailed({"categories": "Unknown category id(s): %s" % ", ".join(str(i) for i in sorted(missing))})
    return categories


def create_event(db: Session, data: EventCreate) -> Event:
    with atomic(db):
        event = Event(
            name=data.name,
            description=data.description,
            hosted_by=data.hosted_by,
            location=data.location,
            start_date=data.start_date,
            end_date=data.end_date,
            entry_fee=data.entry_fee,
            is_active=True,
            coordinators=[EventCoordinator(**c.model_dump()) for c in data.coordinators],
            categories=_load_categories(db, data.categories),
        )
        db.add(event)
    logger.info("Created event %s (%s)", event.id, event.name)
    return event


def update_event(db: Session, event_id: int, data: EventUpdate) -> Event:
    with atomic(db):
        event = get_event(db, event_id)
        changes = data.model_dump(exclude_unset=True)
        start = changes.get("start_date", event.start_date)
        end = changes.get("end_date", event.end_date)
        if start >= end:
            raise ValidationFailed({"end_date": "End date must be after start date"})
        for field, value in changes.items():
            setattr(event, field, value)
    return event


def update_event_coordinators(db: Session, event_id: int, coordinators) -> Event:
    """Replace the event's coordinator list"""
    with atomic(db):
        event = get_event(db, event_id)
        event.coordinators = [EventCoordinator(**c.model_dump()) for c in coordinators]
    logger.info("Event %s now has %d coordinator(s)", event_id, len(coordinators))
    return event


def update_event_categories(db: Session, event_id: int, category_ids) -> Event:
    """Replace the event's category mappings"""
    with atomic(db):
        event = get_event(db, event_id)
        event.categories = _load_categories(db, category_ids)
    return event


def create_event_category(db: Session, data: EventCategoryCreate) -> EventCategory:
    with atomic(db):
        if db.query(EventCategory.id).filter(EventCategory.name == data.name).first():
            raise ValidationFailed({"name": "Category already exists"})
        category = EventCategory(name=data.name, description=data.description)
        db.add(category)
    return category


def list_event_categories(db: Session) -> list:
    return db.query(EventCategory).order_by(EventCategory.name).all()


def delete_event_category(db: Session, category_id: int) -> str:
    """Delete a category; events that carried it simply lose the tag"""
    with atomic(db):
        category = db.query(EventCategory).filter(EventCategory.id == category_id).first()
        if category is None:
            raise NotFound("Category not found")
        name = category.name
        db.delete(category)
    logger.info("Deleted event category %s (%s)", category_id, name)
    return name


def delete_event(db: Session, event_id: int) -> str:
    """Delete an event with its ticket types and discount codes"""
    with atomic(db):
        event = get_event(db, event_id)
        sold = db.query(Ticket.id).filter(Ticket.event_id == event_id).first()
        paid = db.query(Transaction.id).filter(Transaction.event_id == event_id).first()
        if sold or paid:
            raise BusinessRuleViolation("Cannot delete an event after tickets have been sold")
        name = event.name
        db.query(DiscountCode).filter(DiscountCode.event_id == event_id).delete(synchronize_session=False)
        db.delete(event)
    logger.info("Deleted event %s (%s)", event_id, name)
    return name


def list_ticket_types(db: Session, event_id: int) -> list:
    return (
        db.query(TicketType)
        .filter(TicketType.event_id == event_id, TicketType.is_active == True)
        .order_by(TicketType.price)
        .all()
    )


def create_ticket_type(db: Session, event_id: int, data: TicketTypeCreate) -> TicketType:
    with atomic(db):
        get_event(db, event_id)
        ticket_type = TicketType(event_id=event_id, **data.model_dump())
        db.add(ticket_type)
    return ticket_type


def create_discount_code(db: Session, event_id: int, data: DiscountCodeCreate) -> DiscountCode:
    with atomic(db):
        get_event(db, event_id)
        if data.ticket_type_id is not None:
            owner = db.query(TicketType.event_id).filter(TicketType.id == data.ticket_type_id).first()
            if owner is None or owner[0] != event_id:
                raise NotFound("Ticket type not found")
        if db.query(DiscountCode.id).filter(DiscountCode.code == data.code).first():
            raise ValidationFailed({"code": "Discount code already exists"})
        values = data.model_dump()
        values["discount_type"] = data.discount_type.value
        discount = DiscountCode(event_id=event_id, current_uses=0, **values)
        db.add(discount)
    return discount


def dashboard_stats(db: Session) -> dict:
    """Overall dashboard statistics"""
    by_status = dict(
        db.query(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status).all()
    )
    revenue, refunded = (
        db.query(
            func.coalesce(func.sum(Transaction.amount), 0),
            func.coalesce(func.sum(Transaction.refunded_amount), 0),
        )
        .filter(Transaction.status.in_(("success", "refunded")))
        .one()
    )
    return {
        "total_events": db.query(Event).count(),
        "active_events": db.query(Event).filter(Event.is_active == True).count(),
        "total_tickets": sum(by_status.values()),
        "tickets_by_status": by_status,
        "total_check_ins": db.query(Attendance).count(),
        "revenue": int(revenue) - int(refunded),
        "refunded": int(refunded),
    }
