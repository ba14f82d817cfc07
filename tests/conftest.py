from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import issuance
import payments
from auth import create_access_token
from database import get_db, init_db, make_engine
from main import app
from models import DiscountCode, Event, TicketType, utcnow
from schemas import PurchaseTicketRequest, TransactionCreate


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'techfest-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id="user-000001", role="user"):
        token = create_access_token({"sub": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_event(db):
    def _make(**overrides):
        now = utcnow()
        values = {
            "name": "Hackathon",
            "location": "Main Auditorium",
            "start_date": now + timedelta(days=1),
            "end_date": now + timedelta(days=2),
            "entry_fee": 0,
        }
        values.update(overrides)
        event = Event(**values)
        db.add(event)
        db.commit()
        return event
    return _make


@pytest.fixture
def make_ticket_type(db):
    def _make(event, **overrides):
        values = {
            "event_id": event.id,
            "name": "Student Pass",
            "price": 1700,
            "available_quantity": None,
            "max_per_user": 5,
        }
        values.update(overrides)
        ticket_type = TicketType(**values)
        db.add(ticket_type)
        db.commit()
        return ticket_type
    return _make


@pytest.fixture
def make_discount(db):
    def _make(event, **overrides):
        values = {
            "code": "FEST20",
            "event_id": event.id,
            "discount_type": "percentage",
            "discount_value": 20,
            "current_uses": 0,
        }
        values.update(overrides)
        discount = DiscountCode(**values)
        db.add(discount)
        db.commit()
        return discount
    return _make


@pytest.fixture
def make_transaction(db):
    def _make(user_id, event_id, amount=1700, session=None):
        data = TransactionCreate(
            event_id=event_id,
            amount=amount,
            payment_method="upi",
            gateway_transaction_id="pay_test_001",
            upi_id="student@upi",
            payment_processor="Razorpay",
        )
        return payments.create_transaction(session or db, user_id, data).id
    return _make


@pytest.fixture
def buy(db, make_transaction):
    """Record a payment and purchase tickets with it"""
    def _buy(user_id, ticket_type, quantity=1, discount_code=None):
        transaction_id = make_transaction(user_id, ticket_type.event_id, amount=max(ticket_type.price * quantity, 1))
        request = PurchaseTicketRequest(
            ticket_type_id=ticket_type.id,
            event_id=ticket_type.event_id,
            quantity=quantity,
            discount_code=discount_code,
            transaction_id=transaction_id,
        )
        return issuance.purchase_ticket(db, user_id, request)
    return _buy
