"""Temporary access codes.

A user holds at most one code per event. Issuing deletes whatever row the
pair already has and inserts the new one in the same transaction; the unique
(user_id, event_id) constraint catches a concurrent issue for the same pair.
Verification consumes a code with a guarded UPDATE, so it succeeds once.
"""

from datetime import timedelta
from typing import Optional
import logging

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import atomic
from errors import InfrastructureFailure, InvalidOrExpiredAccessCode, InvalidTicket, NotFound
from models import Event, Ticket, TemporaryAccessCode, utcnow
from schemas import AccessCodeRequest, VerifyAccessCodeRequest
from ticket_utils import generate_access_code, unique_id

logger = logging.getLogger(__name__)

ISSUE_ATTEMPTS = 3


def _code_exists(db: Session, qr_code: str) -> bool:
    return db.query(TemporaryAccessCode.id).filter(TemporaryAccessCode.qr_code == qr_code).first() is not None


def _issue_once(db: Session, user_id: str, request: AccessCodeRequest) -> TemporaryAccessCode:
    now = utcnow()
    with atomic(db):
        if db.query(Event.id).filter(Event.id == request.event_id).first() is None:
            raise NotFound("Event not found")
        if request.ticket_id:
            ticket = (
                db.query(Ticket.id)
                .filter(
                    Ticket.id == request.ticket_id,
                    Ticket.user_id == user_id,
                    Ticket.event_id == request.event_id,
                    Ticket.status == "active",
                )
                .first()
            )
            if ticket is None:
                raise InvalidTicket()

        db.execute(
            delete(TemporaryAccessCode)
            .where(
                TemporaryAccessCode.user_id == user_id,
                TemporaryAccessCode.event_id == request.event_id,
            )
        )

        access_code = TemporaryAccessCode(
            user_id=user_id,
            event_id=request.event_id,
            ticket_id=request.ticket_id,
            qr_code=unique_id(lambda: generate_access_code(user_id), lambda c: _code_exists(db, c)),
            created_at=now,
            expires_at=now + timedelta(minutes=request.expiration_minutes),
            is_used=False,
        )
        db.add(access_code)
    return access_code


def generate_temporary_access_code(db: Session, user_id: str, request: AccessCodeRequest) -> TemporaryAccessCode:
    """Issue a fresh code for (user, event), retiring any previous one"""
    for attempt in range(1, ISSUE_ATTEMPTS + 1):
        try:
            access_code = _issue_once(db, user_id, request)
        except IntegrityError:
            logger.warning("Access code issue for user %s event %s collided (attempt %d)", user_id, request.event_id, attempt)
            continue
        logger.info("Issued access code for user %s event %s", user_id, request.event_id)
        return access_code
    raise InfrastructureFailure("Failed to generate access code")


def verify_access_code(db: Session, request: VerifyAccessCodeRequest) -> dict:
    """Consume an access code; returns who it admits"""
    now = utcnow()
    with atomic(db):
        access_code = (
            db.query(TemporaryAccessCode)
            .filter(
                TemporaryAccessCode.event_id == request.event_id,
                TemporaryAccessCode.qr_code == request.qr_code,
                TemporaryAccessCode.is_used == False,
            )
            .first()
        )
        if access_code is None:
            raise InvalidOrExpiredAccessCode("invalid")
        # expired codes stay unused but can never pass again
        if access_code.expires_at < now:
            raise InvalidOrExpiredAccessCode("expired")

        result = db.execute(
            update(TemporaryAccessCode)
            .where(TemporaryAccessCode.id == access_code.id, TemporaryAccessCode.is_used == False)
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidOrExpiredAccessCode("invalid")

        user_id = access_code.user_id
        ticket_id = access_code.ticket_id
        ticket: Optional[Ticket] = None
        if ticket_id:
            ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
        ticket_details = None
        if ticket is not None:
            ticket_details = {
                "id": ticket.id,
                "ticket_type_id": ticket.ticket_type_id,
                "event_id": ticket.event_id,
                "status": ticket.status,
            }

    logger.info("Access code for user %s event %s verified", user_id, request.event_id)
    return {"user_id": user_id, "ticket_id": ticket_id, "ticket_details": ticket_details}
