from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
import logging
import os

from dotenv import load_dotenv

import access_codes
import checkin
import events
import inventory
import issuance
import payments
from auth import Principal, get_admin_user, get_current_user, get_staff_user
from database import get_db, init_db
from errors import InfrastructureFailure, TicketingError, ValidationFailed
from schemas import (
    AccessCodeRequest,
    AttendanceLogEntryOut,
    AttendanceOut,
    CheckInRequest,
    CheckOutRequest,
    DashboardStats,
    DiscountCodeCreate,
    DiscountCodeOut,
    DiscountQuoteOut,
    EventCategoriesUpdate,
    EventCategoryCreate,
    EventCategoryOut,
    EventCoordinatorsUpdate,
    EventCreate,
    EventDetailOut,
    EventOut,
    EventUpdate,
    PurchaseTicketRequest,
    RefundRequest,
    TicketTypeCreate,
    TicketTypeOut,
    TransactionCreate,
    TransactionOut,
    UserTicketOut,
    ValidateDiscountRequest,
    VerifyAccessCodeRequest,
)
from ticket_utils import render_qr_png

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tech Fest Ticketing API", version="1.0.0")

cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(CORSMiddleware, allow_origins=cors_origins, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


def ok(message: Optional[str] = None, **payload) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(payload)
    return jsonable_encoder(body)


def _field_errors(errors) -> dict:
    fields = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(loc) or "__root__"] = err.get("msg", "Invalid value")
    return fields


@app.exception_handler(TicketingError)
async def ticketing_error_handler(request: Request, exc: TicketingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    failure = ValidationFailed(_field_errors(exc.errors()))
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    failure = InfrastructureFailure()
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


@app.on_event("startup")
def startup_event():
    init_db()


@app.get("/")
def root():
    return {"message": "Tech Fest Ticketing API v1.0", "status": "running"}

# ==================== TICKET ROUTES ====================

@app.post("/api/tickets/purchase")
def purchase_ticket(data: PurchaseTicketRequest, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Issue tickets against a recorded payment"""
    result = issuance.purchase_ticket(db, current_user.user_id, data)
    return ok("Tickets purchased successfully", **result.model_dump())

@app.post("/api/discounts/validate")
def validate_discount(data: ValidateDiscountRequest, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Preview a discount code against a ticket type"""
    quote = inventory.validate_discount_code(db, data.code, data.ticket_type_id, data.event_id)
    return ok(discount=DiscountQuoteOut(**quote))

@app.get("/api/tickets/mine")
def my_tickets(current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    tickets = issuance.list_user_tickets(db, current_user.user_id)
    return ok(tickets=[UserTicketOut(**row) for row in tickets])

@app.get("/api/tickets/{ticket_id}/qr")
def ticket_qr(ticket_id: str, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """QR image for a ticket the caller owns"""
    ticket = issuance.get_owned_ticket(db, ticket_id, current_user.user_id)
    return Response(content=render_qr_png(ticket.qr_code), media_type="image/png")

# ==================== ATTENDANCE ROUTES ====================

@app.post("/api/attendance/check-in")
def check_in(data: CheckInRequest, current_user: Principal = Depends(get_staff_user), db: Session = Depends(get_db)):
    attendance = checkin.check_in_attendee(db, current_user.user_id, data)
    return ok("Attendee checked in successfully", attendance=AttendanceOut.model_validate(attendance))

@app.post("/api/attendance/check-out")
def check_out(data: CheckOutRequest, current_user: Principal = Depends(get_staff_user), db: Session = Depends(get_db)):
    entry = checkin.check_out_attendee(db, current_user.user_id, data)
    return ok("Attendee checked out", entry=AttendanceLogEntryOut.model_validate(entry))

@app.get("/api/events/{event_id}/attendance")
def event_attendance(event_id: int, current_user: Principal = Depends(get_staff_user), db: Session = Depends(get_db)):
    records = checkin.get_event_attendance(db, event_id)
    return ok(
        attendance_count=len(records),
        attendance_records=[AttendanceOut.model_validate(r) for r in records],
    )

@app.get("/api/attendance/{attendance_id}/log")
def attendance_log(attendance_id: int, current_user: Principal = Depends(get_staff_user), db: Session = Depends(get_db)):
    entries = checkin.attendance_log(db, attendance_id)
    return ok(entries=[AttendanceLogEntryOut.model_validate(e) for e in entries])

# ==================== ACCESS CODE ROUTES ====================

@app.post("/api/access-codes")
def generate_access_code(data: AccessCodeRequest, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Issue a short-lived entry code, replacing any earlier one for this event"""
    code = access_codes.generate_temporary_access_code(db, current_user.user_id, data)
    return ok(access_code=code.qr_code, expires_at=code.expires_at)

@app.post("/api/access-codes/verify")
def verify_access_code(data: VerifyAccessCodeRequest, current_user: Principal = Depends(get_staff_user), db: Session = Depends(get_db)):
    result = access_codes.verify_access_code(db, data)
    return ok("Access code verified successfully", **result)

# ==================== TRANSACTION ROUTES ====================

@app.post("/api/transactions")
def create_transaction(data: TransactionCreate, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Record a payment the gateway already settled"""
    transaction = payments.create_transaction(db, current_user.user_id, data)
    return ok("Payment processed successfully", transaction_id=transaction.id)

@app.get("/api/transactions/mine")
def my_transactions(current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    transactions = payments.list_user_transactions(db, current_user.user_id)
    return ok(transactions=[TransactionOut.model_validate(t) for t in transactions])

@app.post("/api/transactions/{transaction_id}/refunds")
def refund_transaction(transaction_id: str, data: RefundRequest, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    refund = payments.process_refund(db, current_user.user_id, transaction_id, data)
    return ok("Refund processed successfully", refund_id=refund.id)

# ==================== EVENT ROUTES ====================

@app.get("/api/events")
def list_events(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), search: Optional[str] = None,
                upcoming: bool = False, category_id: Optional[int] = None,
                current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    listing = events.list_events(db, page=page, limit=limit, search=search, upcoming=upcoming, category_id=category_id)
    return ok(
        events=[EventOut.model_validate(e) for e in listing["events"]],
        pagination=listing["pagination"],
    )

@app.post("/api/events")
def create_event(data: EventCreate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    event = events.create_event(db, data)
    return ok("Event created", event=EventDetailOut.model_validate(event))

@app.get("/api/events/{event_id}")
def get_event(event_id: int, current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    event = events.get_event(db, event_id)
    ticket_types = events.list_ticket_types(db, event_id)
    return ok(
        event=EventDetailOut.model_validate(event),
        ticket_types=[TicketTypeOut.model_validate(t) for t in ticket_types],
    )

@app.put("/api/events/{event_id}")
def update_event(event_id: int, data: EventUpdate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    event = events.update_event(db, event_id, data)
    return ok("Event updated", event=EventOut.model_validate(event))

@app.delete("/api/events/{event_id}")
def delete_event(event_id: int, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    """Delete an event and its ticket types"""
    name = events.delete_event(db, event_id)
    return ok(f"Event '{name}' deleted successfully")

@app.put("/api/events/{event_id}/coordinators")
def update_event_coordinators(event_id: int, data: EventCoordinatorsUpdate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    event = events.update_event_coordinators(db, event_id, data.coordinators)
    return ok("Event coordinators updated", event=EventDetailOut.model_validate(event))

@app.put("/api/events/{event_id}/categories")
def update_event_categories(event_id: int, data: EventCategoriesUpdate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    event = events.update_event_categories(db, event_id, data.category_ids)
    return ok("Event categories updated", event=EventDetailOut.model_validate(event))

@app.post("/api/events/{event_id}/ticket-types")
def create_ticket_type(event_id: int, data: TicketTypeCreate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    ticket_type = events.create_ticket_type(db, event_id, data)
    return ok("Ticket type created", ticket_type=TicketTypeOut.model_validate(ticket_type))

@app.post("/api/events/{event_id}/discount-codes")
def create_discount_code(event_id: int, data: DiscountCodeCreate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    discount = events.create_discount_code(db, event_id, data)
    return ok("Discount code created", discount_code=DiscountCodeOut.model_validate(discount))

# ==================== CATEGORY ROUTES ====================

@app.get("/api/event-categories")
def list_event_categories(current_user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    categories = events.list_event_categories(db)
    return ok(categories=[EventCategoryOut.model_validate(c) for c in categories])

@app.post("/api/event-categories")
def create_event_category(data: EventCategoryCreate, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    category = events.create_event_category(db, data)
    return ok("Category created", category=EventCategoryOut.model_validate(category))

@app.delete("/api/event-categories/{category_id}")
def delete_event_category(category_id: int, current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    name = events.delete_event_category(db, category_id)
    return ok(f"Category '{name}' deleted successfully")

# ==================== DASHBOARD ROUTES ====================

@app.get("/api/dashboard/stats")
def get_dashboard_stats(current_user: Principal = Depends(get_admin_user), db: Session = Depends(get_db)):
    """Get overall dashboard statistics"""
    return ok(stats=DashboardStats(**events.dashboard_stats(db)))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
