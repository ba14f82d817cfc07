from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    CheckConstraint,
    UniqueConstraint,
    Table,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()

TICKET_STATUSES = ("active", "used", "cancelled", "refunded")
DISCOUNT_TYPES = ("percentage", "amount")
CHECK_IN_METHODS = ("qr_scan", "manual")
VERIFICATION_STATUSES = ("success", "warning", "rejected")
LOG_ACTIONS = ("check_in", "check_out")
PAYMENT_METHODS = ("card", "upi", "netbanking", "wallet")
TRANSACTION_STATUSES = ("pending", "success", "failed", "refunded")
REFUND_STATUSES = ("none", "partial", "full")
REFUND_RECORD_STATUSES = ("processing", "completed", "failed")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _in(column: str, values) -> str:
    return "%s IN (%s)" % (column, ", ".join("'%s'" % v for v in values))


class Event(Base):
    """Fest event; referenced by ticket types, tickets and attendance"""
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    hosted_by = Column(String(200))
    location = Column(String(200), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    entry_fee = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    ticket_types = relationship("TicketType", back_populates="event", cascade="all, delete-orphan")
    coordinators = relationship(
        "EventCoordinator",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventCoordinator.id",
    )
    categories = relationship("EventCategory", secondary="event_category_map", back_populates="events")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_event_window"),
    )

    def __repr__(self):
        return f"<Event(id={self.id}, name={self.name})>"


event_category_map = Table(
    "event_category_map",
    Base.metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("event_categories.id", ondelete="CASCADE"), primary_key=True),
)


class EventCategory(Base):
    __tablename__ = "event_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)

    events = relationship("Event", secondary=event_category_map, back_populates="categories")

    def __repr__(self):
        return f"<EventCategory(id={self.id}, name={self.name})>"


class EventCoordinator(Base):
    """Contact person for an event; user_id is set when the coordinator has an account"""
    __tablename__ = "event_coordinators"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(200))
    user_id = Column(String(64))

    event = relationship("Event", back_populates="coordinators")


class TicketType(Base):
    """Purchasable class of ticket; available_quantity NULL means unlimited"""
    __tablename__ = "ticket_types"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price = Column(Integer, nullable=False)
    available_quantity = Column(Integer, nullable=True)
    max_per_user = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    event = relationship("Event", back_populates="ticket_types")

    __table_args__ = (
        CheckConstraint("available_quantity IS NULL OR available_quantity >= 0", name="check_inventory_non_negative"),
        CheckConstraint("price >= 0", name="check_ticket_type_price"),
    )

    def __repr__(self):
        return f"<TicketType(id={self.id}, name={self.name}, available={self.available_quantity})>"


class Ticket(Base):
    """Issued ticket; id has the form ESP<year>-<6 digits>"""
    __tablename__ = "tickets"

    id = Column(String(20), primary_key=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    transaction_id = Column(String(32), ForeignKey("transactions.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")
    qr_code = Column(String(64), unique=True, nullable=False, index=True)
    purchase_date = Column(DateTime, nullable=False, default=utcnow)
    check_in_date = Column(DateTime, nullable=True)
    checked_in_by = Column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(_in("status", TICKET_STATUSES), name="check_ticket_status"),
    )

    def __repr__(self):
        return f"<Ticket(id={self.id}, status={self.status})>"


class DiscountCode(Base):
    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(Text)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Integer, nullable=False)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(_in("discount_type", DISCOUNT_TYPES), name="check_discount_type"),
        CheckConstraint("max_uses IS NULL OR current_uses <= max_uses", name="check_discount_usage"),
    )

    def __repr__(self):
        return f"<DiscountCode(code={self.code}, uses={self.current_uses}/{self.max_uses})>"


class DiscountUsage(Base):
    """One row per discounted ticket"""
    __tablename__ = "discount_usage"

    id = Column(Integer, primary_key=True, index=True)
    discount_id = Column(Integer, ForeignKey("discount_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket_id = Column(String(20), ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id = Column(String(64), nullable=False)
    used_at = Column(DateTime, nullable=False, default=utcnow)


class Transaction(Base):
    """Payment attempt; amounts are in minor currency units (paise)"""
    __tablename__ = "transactions"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    gateway_transaction_id = Column(String(200))
    gateway_response = Column(Text)
    refund_status = Column(String(20), nullable=False, default="none")
    refunded_amount = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    payment_details = relationship("PaymentDetails", back_populates="transaction", uselist=False, cascade="all, delete-orphan")
    refunds = relationship("Refund", back_populates="transaction", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_transaction_amount"),
        CheckConstraint("refunded_amount >= 0 AND refunded_amount <= amount", name="check_refund_bound"),
        CheckConstraint(_in("payment_method", PAYMENT_METHODS), name="check_payment_method"),
        CheckConstraint(_in("status", TRANSACTION_STATUSES), name="check_transaction_status"),
        CheckConstraint(_in("refund_status", REFUND_STATUSES), name="check_refund_status"),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, amount={self.amount}, refunded={self.refunded_amount})>"


class PaymentDetails(Base):
    __tablename__ = "payment_details"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(32), ForeignKey("transactions.id", ondelete="CASCADE"), unique=True, nullable=False)
    card_last4 = Column(String(4))
    card_brand = Column(String(50))
    upi_id = Column(String(100))
    bank_name = Column(String(100))
    wallet_name = Column(String(100))
    payment_processor = Column(String(100), nullable=False)
    receipt_url = Column(String(500))
    created_at = Column(DateTime, default=utcnow)

    transaction = relationship("Transaction", back_populates="payment_details")


class Refund(Base):
    """Append-only refund ledger entry"""
    __tablename__ = "refunds"

    id = Column(String(32), primary_key=True)
    transaction_id = Column(String(32), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    processed_by = Column(String(64))
    gateway_refund_id = Column(String(200))
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    transaction = relationship("Transaction", back_populates="refunds")

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_refund_amount"),
        CheckConstraint(_in("status", REFUND_RECORD_STATUSES), name="check_refund_record_status"),
    )


class Attendance(Base):
    """Completed check-in; at most one per (ticket, event)"""
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    ticket_id = Column(String(20), ForeignKey("tickets.id"), nullable=False)
    checked_in_at = Column(DateTime, nullable=False, default=utcnow)
    checked_in_by = Column(String(64), nullable=False)
    check_in_method = Column(String(20), nullable=False, default="qr_scan")
    check_in_location = Column(String(200))
    verification_status = Column(String(20), nullable=False, default="success")
    notes = Column(Text)

    log_entries = relationship(
        "AttendanceLogEntry",
        back_populates="attendance",
        cascade="all, delete-orphan",
        order_by="AttendanceLogEntry.id",
    )

    __table_args__ = (
        UniqueConstraint("ticket_id", "event_id", name="uq_attendance_ticket_event"),
        CheckConstraint(_in("check_in_method", CHECK_IN_METHODS), name="check_check_in_method"),
        CheckConstraint(_in("verification_status", VERIFICATION_STATUSES), name="check_verification_status"),
    )

    def __repr__(self):
        return f"<Attendance(id={self.id}, ticket_id={self.ticket_id}, event_id={self.event_id})>"


class AttendanceLogEntry(Base):
    __tablename__ = "attendance_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    attendance_id = Column(Integer, ForeignKey("attendance.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    processed_by = Column(String(64))
    notes = Column(Text)

    attendance = relationship("Attendance", back_populates="log_entries")

    __table_args__ = (
        CheckConstraint(_in("action", LOG_ACTIONS), name="check_log_action"),
    )


class TemporaryAccessCode(Base):
    """Short-lived single-use entry code; one row per (user, event)"""
    __tablename__ = "temporary_access_codes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    ticket_id = Column(String(20), ForeignKey("tickets.id"), nullable=True)
    qr_code = Column(String(100), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_access_code_user_event"),
    )

    def __repr__(self):
        return f"<TemporaryAccessCode(user_id={self.user_id}, event_id={self.event_id}, used={self.is_used})>"
