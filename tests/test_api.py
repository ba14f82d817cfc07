from datetime import timedelta

from models import utcnow


def _create_event(client, admin):
    start = utcnow() + timedelta(days=3)
    response = client.post("/api/events", headers=admin, json={
        "name": "CodeSprint",
        "location": "Lab Block",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(hours=8)).isoformat(),
        "entry_fee": 0,
    })
    assert response.status_code == 200, response.text
    return response.json()["event"]["id"]


def _pay(client, headers, event_id, amount):
    response = client.post("/api/transactions", headers=headers, json={
        "event_id": event_id,
        "amount": amount,
        "payment_method": "upi",
        "gateway_transaction_id": "pay_live_01",
        "upi_id": "dev@upi",
        "payment_processor": "Razorpay",
    })
    assert response.status_code == 200, response.text
    return response.json()["transaction_id"]


def test_requires_authentication(client):
    response = client.get("/api/tickets/mine")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "User not authenticated", "error": "not_authenticated"}

    response = client.get("/api/tickets/mine", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_validation_failures_carry_field_errors(client, auth_headers):
    response = client.post("/api/tickets/purchase", headers=auth_headers(), json={
        "ticket_type_id": 1, "event_id": 1, "quantity": 0,
    })
    body = response.json()
    assert response.status_code == 422
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert "quantity" in body["errors"]
    assert "transaction_id" in body["errors"]


def test_staff_only_routes(client, auth_headers):
    response = client.post("/api/access-codes/verify", headers=auth_headers(), json={"event_id": 1, "qr_code": "x"})
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_end_to_end_purchase_and_check_in(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    buyer = auth_headers("user-000042")
    event_id = _create_event(client, admin)

    response = client.post(f"/api/events/{event_id}/ticket-types", headers=admin, json={
        "name": "Student Pass", "price": 1700, "available_quantity": 1, "max_per_user": 5,
    })
    ticket_type_id = response.json()["ticket_type"]["id"]
    client.post(f"/api/events/{event_id}/discount-codes", headers=admin, json={
        "code": "FEST20", "discount_type": "percentage", "discount_value": 20,
    })

    preview = client.post("/api/discounts/validate", headers=buyer, json={
        "code": "FEST20", "ticket_type_id": ticket_type_id, "event_id": event_id,
    }).json()
    assert preview["discount"]["discounted_price"] == 1360

    transaction_id = _pay(client, buyer, event_id, 1360)
    response = client.post("/api/tickets/purchase", headers=buyer, json={
        "ticket_type_id": ticket_type_id,
        "event_id": event_id,
        "quantity": 1,
        "discount_code": "FEST20",
        "transaction_id": transaction_id,
    })
    body = response.json()
    assert body["success"] is True
    assert body["total_amount"] == 1360
    ticket_id = body["ticket_ids"][0]

    sold_out = client.post("/api/tickets/purchase", headers=buyer, json={
        "ticket_type_id": ticket_type_id, "event_id": event_id, "quantity": 1,
        "transaction_id": _pay(client, buyer, event_id, 1700),
    })
    assert sold_out.status_code == 409
    assert sold_out.json()["error"] == "insufficient_inventory"

    mine = client.get("/api/tickets/mine", headers=buyer).json()["tickets"]
    assert [t["id"] for t in mine] == [ticket_id]
    qr_code = mine[0]["qr_code"]

    qr = client.get(f"/api/tickets/{ticket_id}/qr", headers=buyer)
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert qr.content.startswith(b"\x89PNG")

    staff = auth_headers("staff-7", "staff")
    payload = {"ticket_id": ticket_id, "event_id": event_id, "qr_code": qr_code, "check_in_method": "qr_scan"}
    first = client.post("/api/attendance/check-in", headers=staff, json=payload)
    assert first.json()["success"] is True
    assert first.json()["attendance"]["checked_in_by"] == "staff-7"

    again = client.post("/api/attendance/check-in", headers=staff, json=payload)
    assert again.status_code == 409
    assert again.json()["message"] == "Attendee already checked in"

    attendance = client.get(f"/api/events/{event_id}/attendance", headers=staff).json()
    assert attendance["attendance_count"] == 1

    stats = client.get("/api/dashboard/stats", headers=admin).json()["stats"]
    assert stats["tickets_by_status"] == {"used": 1}
    assert stats["total_check_ins"] == 1


def test_access_code_round_trip(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    event_id = _create_event(client, admin)
    user = auth_headers("user-000042")

    issued = client.post("/api/access-codes", headers=user, json={"event_id": event_id, "expiration_minutes": 10}).json()
    assert issued["success"] is True

    verify = {"event_id": event_id, "qr_code": issued["access_code"]}
    first = client.post("/api/access-codes/verify", headers=admin, json=verify).json()
    assert first["success"] is True
    assert first["user_id"] == "user-000042"

    second = client.post("/api/access-codes/verify", headers=admin, json=verify)
    assert second.status_code == 409
    assert second.json()["reason"] == "invalid"


def test_refund_route_enforces_bound(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    user = auth_headers("user-9")
    event_id = _create_event(client, admin)
    transaction_id = _pay(client, user, event_id, 500)

    too_much = client.post(f"/api/transactions/{transaction_id}/refunds", headers=admin, json={"amount": 501, "reason": "dup"})
    assert too_much.status_code == 409
    assert too_much.json()["error"] == "refund_exceeds_original"

    ok = client.post(f"/api/transactions/{transaction_id}/refunds", headers=admin, json={"amount": 500, "reason": "dup"})
    assert ok.json()["refund_id"].startswith("REF")

    mine = client.get("/api/transactions/mine", headers=user).json()["transactions"]
    assert mine[0]["refund_status"] == "full"


def test_event_admin(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    event_id = _create_event(client, admin)

    bad = client.put(f"/api/events/{event_id}", headers=admin, json={"end_date": (utcnow() - timedelta(days=30)).isoformat()})
    assert bad.status_code == 422

    renamed = client.put(f"/api/events/{event_id}", headers=admin, json={"name": "CodeSprint 2"})
    assert renamed.json()["event"]["name"] == "CodeSprint 2"

    listing = client.get("/api/events?search=sprint", headers=auth_headers()).json()
    assert listing["pagination"]["total"] == 1

    assert client.delete(f"/api/events/{event_id}", headers=admin).json()["success"] is True
    assert client.get(f"/api/events/{event_id}", headers=admin).status_code == 404


def test_ticket_type_without_per_user_cap(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    buyer = auth_headers("user-000042")
    event_id = _create_event(client, admin)

    created = client.post(f"/api/events/{event_id}/ticket-types", headers=admin, json={
        "name": "Open Pass", "price": 500, "max_per_user": None,
    }).json()["ticket_type"]
    assert created["max_per_user"] is None

    response = client.post("/api/tickets/purchase", headers=buyer, json={
        "ticket_type_id": created["id"],
        "event_id": event_id,
        "quantity": 2,
        "transaction_id": _pay(client, buyer, event_id, 1000),
    })
    assert response.status_code == 200, response.text
    assert len(response.json()["ticket_ids"]) == 2


def test_reused_transaction_is_refused(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    buyer = auth_headers("user-000042")
    event_id = _create_event(client, admin)
    ticket_type_id = client.post(f"/api/events/{event_id}/ticket-types", headers=admin, json={
        "name": "Day Pass", "price": 500,
    }).json()["ticket_type"]["id"]
    payload = {
        "ticket_type_id": ticket_type_id,
        "event_id": event_id,
        "quantity": 1,
        "transaction_id": _pay(client, buyer, event_id, 500),
    }

    assert client.post("/api/tickets/purchase", headers=buyer, json=payload).status_code == 200
    again = client.post("/api/tickets/purchase", headers=buyer, json=payload)
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_transaction"
    assert again.json()["reason"] == "already_used"


def test_event_listing_reports_only_the_bad_query_field(client, auth_headers):
    response = client.get("/api/events?page=0", headers=auth_headers())
    assert response.status_code == 422
    assert list(response.json()["errors"]) == ["page"]

    response = client.get("/api/events?limit=500", headers=auth_headers())
    assert response.status_code == 422
    assert list(response.json()["errors"]) == ["limit"]


def test_event_coordinators_and_categories(client, auth_headers):
    admin = auth_headers("admin-1", "admin")
    workshop = client.post("/api/event-categories", headers=admin, json={"name": "Workshop"}).json()["category"]
    gaming = client.post("/api/event-categories", headers=admin, json={"name": "Gaming"}).json()["category"]

    start = utcnow() + timedelta(days=5)
    created = client.post("/api/events", headers=admin, json={
        "name": "Robo Wars",
        "location": "Ground",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(hours=4)).isoformat(),
        "coordinators": [{"name": "Asha", "phone": "9876543210", "email": ""}],
        "categories": [gaming["id"]],
    }).json()["event"]
    event_id = created["id"]
    assert created["coordinators"][0]["name"] == "Asha"
    assert created["coordinators"][0]["email"] is None
    assert [c["name"] for c in created["categories"]] == ["Gaming"]

    updated = client.put(f"/api/events/{event_id}/coordinators", headers=admin, json={"coordinators": [
        {"name": "Ravi", "phone": "9123456780", "user_id": "user-77"},
        {"name": "Meena", "phone": "9000000001"},
    ]}).json()["event"]
    assert [c["name"] for c in updated["coordinators"]] == ["Ravi", "Meena"]

    updated = client.put(f"/api/events/{event_id}/categories", headers=admin, json={
        "category_ids": [workshop["id"], gaming["id"]],
    }).json()["event"]
    assert sorted(c["name"] for c in updated["categories"]) == ["Gaming", "Workshop"]

    listing = client.get(f"/api/events?category_id={workshop['id']}", headers=auth_headers()).json()
    assert [e["id"] for e in listing["events"]] == [event_id]

    unknown = client.put(f"/api/events/{event_id}/categories", headers=admin, json={"category_ids": [9999]})
    assert unknown.status_code == 422
    assert "categories" in unknown.json()["errors"]

    assert client.delete(f"/api/event-categories/{workshop['id']}", headers=admin).json()["success"] is True
    detail = client.get(f"/api/events/{event_id}", headers=admin).json()["event"]
    assert [c["name"] for c in detail["categories"]] == ["Gaming"]
    names = [c["name"] for c in client.get("/api/event-categories", headers=admin).json()["categories"]]
    assert names == ["Gaming"]
