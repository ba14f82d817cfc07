"""Attendance check-in.

A ticket goes ``active -> used`` exactly once. The attendance row, its first
log entry and the ticket update commit together; the unique
(ticket_id, event_id) constraint on attendance and the ``status == 'active'``
guard on the ticket update settle races between two scanners.
"""

from typing import Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import atomic
from errors import AlreadyCheckedIn, InvalidOrUsedTicket, NotFound
from models import Attendance, AttendanceLogEntry, Ticket, utcnow
from schemas import CheckInRequest, CheckOutRequest

logger = logging.getLogger(__name__)


def _existing_attendance(db: Session, ticket_id: str, event_id: int) -> Optional[Attendance]:
    return (
        db.query(Attendance)
        .filter(Attendance.ticket_id == ticket_id, Attendance.event_id == event_id)
        .first()
    )


def check_in_attendee(db: Session, admin_id: str, request: CheckInRequest) -> Attendance:
    now = utcnow()
    try:
        with atomic(db):
            # any mismatch gets the same answer so callers can't probe which field was wrong
            ticket = (
                db.query(Ticket)
                .filter(
                    Ticket.id == request.ticket_id,
                    Ticket.event_id == request.event_id,
                    Ticket.qr_code == request.qr_code,
                )
                .first()
            )
            if ticket is None:
                raise InvalidOrUsedTicket()

            # the caller holds the right QR here, so naming the duplicate leaks nothing
            if _existing_attendance(db, request.ticket_id, request.event_id) is not None:
                raise AlreadyCheckedIn()
            if ticket.status != "active":
                raise InvalidOrUsedTicket()

            attendance = Attendance(
                event_id=request.event_id,
                user_id=ticket.user_id,
                ticket_id=ticket.id,
                checked_in_at=now,
                checked_in_by=admin_id,
                check_in_method=request.check_in_method.value,
                check_in_location=request.check_in_location,
                verification_status="success",
                notes=request.notes,
            )
            db.add(attendance)
            db.flush()

            db.add(AttendanceLogEntry(
                attendance_id=attendance.id,
                action="check_in",
                timestamp=now,
                processed_by=admin_id,
                notes=f"Initial check-in: {request.notes or 'No notes'}",
            ))

            result = db.execute(
                update(Ticket)
                .where(Ticket.id == ticket.id, Ticket.status == "active")
                .values(status="used", check_in_date=now, checked_in_by=admin_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyCheckedIn()
    except IntegrityError:
        logger.info("Concurrent check-in lost the race for ticket %s", request.ticket_id)
        raise AlreadyCheckedIn()

    logger.info("Ticket %s checked in to event %s by %s", request.ticket_id, request.event_id, admin_id)
    return attendance


def check_out_attendee(db: Session, admin_id: str, request: CheckOutRequest) -> AttendanceLogEntry:
    """Append a check_out entry for a multi-day event; the ticket stays used"""
    with atomic(db):
        attendance = _existing_attendance(db, request.ticket_id, request.event_id)
        if attendance is None:
            raise NotFound("Attendee has not checked in")
        entry = AttendanceLogEntry(
            attendance_id=attendance.id,
            action="check_out",
            timestamp=utcnow(),
            processed_by=admin_id,
            notes=request.notes,
        )
        db.add(entry)
    logger.info("Ticket %s checked out of event %s by %s", request.ticket_id, request.event_id, admin_id)
    return entry


def get_event_attendance(db: Session, event_id: int) -> list:
    return (
        db.query(Attendance)
        .filter(Attendance.event_id == event_id)
        .order_by(Attendance.checked_in_at.desc(), Attendance.id.desc())
        .all()
    )


def attendance_log(db: Session, attendance_id: int) -> list:
    return (
        db.query(AttendanceLogEntry)
        .filter(AttendanceLogEntry.attendance_id == attendance_id)
        .order_by(AttendanceLogEntry.timestamp, AttendanceLogEntry.id)
        .all()
    )
