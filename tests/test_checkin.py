import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import SQLAlchemyError

import checkin
from errors import AlreadyCheckedIn, InvalidOrUsedTicket, NotFound, TicketingError
from models import Attendance, AttendanceLogEntry, Ticket
from schemas import CheckInRequest, CheckOutRequest


@pytest.fixture
def ticket(db, make_event, make_ticket_type, buy):
    event = make_event()
    ticket_type = make_ticket_type(event)
    ticket_id = buy("user-a", ticket_type).ticket_ids[0]
    return db.get(Ticket, ticket_id)


def _request(ticket, **overrides):
    values = {"ticket_id": ticket.id, "event_id": ticket.event_id, "qr_code": ticket.qr_code}
    values.update(overrides)
    return CheckInRequest(**values)


def test_scenario_check_in_then_repeat(db, ticket):
    attendance = checkin.check_in_attendee(db, "admin-1", _request(ticket, notes="Gate 2"))
    assert attendance.verification_status == "success"
    assert attendance.checked_in_by == "admin-1"
    assert attendance.user_id == "user-a"

    db.expire_all()
    used = db.get(Ticket, ticket.id)
    assert used.status == "used"
    assert used.checked_in_by == "admin-1"
    assert used.check_in_date is not None

    with pytest.raises(AlreadyCheckedIn):
        checkin.check_in_attendee(db, "admin-1", _request(used))
    db.expire_all()
    assert db.get(Ticket, ticket.id).status == "used"
    assert db.query(Attendance).count() == 1


def test_repeat_reports_already_checked_in_when_ticket_still_matches(db, ticket):
    checkin.check_in_attendee(db, "admin-1", _request(ticket))
    # a stale "active" ticket row must still be refused by the attendance lookup
    db.query(Ticket).filter(Ticket.id == ticket.id).update({"status": "active"})
    db.commit()

    with pytest.raises(AlreadyCheckedIn):
        checkin.check_in_attendee(db, "admin-2", _request(ticket))
    assert db.query(Attendance).count() == 1


def test_check_in_writes_one_log_entry(db, ticket):
    attendance = checkin.check_in_attendee(db, "admin-1", _request(ticket, notes="VIP"))
    entries = checkin.attendance_log(db, attendance.id)
    assert [e.action for e in entries] == ["check_in"]
    assert entries[0].processed_by == "admin-1"
    assert entries[0].notes == "Initial check-in: VIP"


@pytest.mark.parametrize(
    "overrides",
    [
        {"qr_code": "ESP2026-000000-deadbeef"},
        {"event_id": 9999},
        {"ticket_id": "ESP2026-000000"},
    ],
)
def test_mismatches_are_undifferentiated(db, ticket, overrides):
    with pytest.raises(InvalidOrUsedTicket) as exc:
        checkin.check_in_attendee(db, "admin-1", _request(ticket, **overrides))
    assert exc.value.message == "Invalid or used ticket"
    assert db.query(Attendance).count() == 0


def test_cancelled_ticket_is_rejected(db, ticket):
    db.query(Ticket).filter(Ticket.id == ticket.id).update({"status": "cancelled"})
    db.commit()
    with pytest.raises(InvalidOrUsedTicket):
        checkin.check_in_attendee(db, "admin-1", _request(ticket))


def test_check_out_appends_to_log(db, ticket):
    attendance = checkin.check_in_attendee(db, "admin-1", _request(ticket))
    checkin.check_out_attendee(db, "admin-2", CheckOutRequest(ticket_id=ticket.id, event_id=ticket.event_id))

    actions = [e.action for e in checkin.attendance_log(db, attendance.id)]
    assert actions == ["check_in", "check_out"]
    db.expire_all()
    assert db.get(Ticket, ticket.id).status == "used"


def test_check_out_requires_check_in(db, ticket):
    with pytest.raises(NotFound):
        checkin.check_out_attendee(db, "admin-1", CheckOutRequest(ticket_id=ticket.id, event_id=ticket.event_id))
    assert db.query(AttendanceLogEntry).count() == 0


def test_event_attendance_listing(db, make_event, make_ticket_type, buy):
    event = make_event()
    ticket_type = make_ticket_type(event)
    ticket_ids = buy("user-a", ticket_type, quantity=2).ticket_ids
    for ticket_id in ticket_ids:
        checkin.check_in_attendee(db, "admin-1", _request(db.get(Ticket, ticket_id)))

    records = checkin.get_event_attendance(db, event.id)
    assert sorted(r.ticket_id for r in records) == sorted(ticket_ids)


def test_concurrent_check_ins_create_one_attendance(db, session_factory, ticket):
    scanners = 4
    request = _request(ticket)
    barrier = threading.Barrier(scanners)

    def attempt(n):
        session = session_factory()
        try:
            barrier.wait(timeout=10)
            checkin.check_in_attendee(session, f"admin-{n}", request)
            return "ok"
        except (TicketingError, SQLAlchemyError) as exc:
            return type(exc).__name__
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=scanners) as pool:
        outcomes = list(pool.map(attempt, range(scanners)))

    db.expire_all()
    assert outcomes.count("ok") == 1
    assert db.query(Attendance).filter(Attendance.ticket_id == ticket.id).count() == 1
    assert db.query(AttendanceLogEntry).count() == 1
    assert db.get(Ticket, ticket.id).status == "used"
