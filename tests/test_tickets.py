import pytest

from conftest import auth_headers, make_user
from multimart.models import Ticket, UserRole


@pytest.fixture()
def ticket(client, settings, db):
    seller = make_user(db, UserRole.seller)
    admin = make_user(db, UserRole.admin)
    headers = auth_headers(settings, seller)
    resp = client.post(
        "/api/tickets",
        json={
            "issue_type": "payment_issue",
            "subject": "Payout missing",
            "description": "My payout for last week has not arrived.",
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.json()
    return {
        "id": resp.json()["data"]["id"],
        "owner_headers": headers,
        "admin_headers": auth_headers(settings, admin),
    }


def test_created_open_with_owner_type(client, ticket):
    resp = client.get(f"/api/tickets/{ticket['id']}", headers=ticket["owner_headers"])

    data = resp.json()["data"]
    assert data["status"] == "open"
    assert data["userType"] == "seller"
    assert data["issueType"] == "payment_issue"


def test_respond_moves_to_in_progress(client, ticket):
    resp = client.post(
        f"/api/admin/tickets/{ticket['id']}/respond",
        json={"response": "Looking into it"},
        headers=ticket["admin_headers"],
    )

    data = resp.json()["data"]
    assert data["status"] == "in_progress"
    assert data["adminResponse"] == "Looking into it"


def test_resolving_twice_is_a_conflict_and_keeps_timestamp(client, db, ticket):
    admin = ticket["admin_headers"]
    first = client.post(f"/api/admin/tickets/{ticket['id']}/resolve", headers=admin)
    db.expire_all()
    resolved_at = db.get(Ticket, ticket["id"]).resolved_at

    second = client.post(f"/api/admin/tickets/{ticket['id']}/resolve", headers=admin)

    assert first.status_code == 200
    assert second.status_code == 409
    db.expire_all()
    assert db.get(Ticket, ticket["id"]).resolved_at == resolved_at


def test_closing_a_closed_ticket_is_a_conflict(client, db, ticket):
    owner = ticket["owner_headers"]
    first = client.post(f"/api/tickets/{ticket['id']}/close", headers=owner)
    db.expire_all()
    closed_at = db.get(Ticket, ticket["id"]).closed_at

    again_owner = client.post(f"/api/tickets/{ticket['id']}/close", headers=owner)
    again_admin = client.post(
        f"/api/admin/tickets/{ticket['id']}/close", headers=ticket["admin_headers"]
    )
    resolve = client.post(
        f"/api/admin/tickets/{ticket['id']}/resolve", headers=ticket["admin_headers"]
    )

    assert first.status_code == 200
    assert again_owner.status_code == 409
    assert again_admin.status_code == 409
    assert resolve.status_code == 409
    db.expire_all()
    assert db.get(Ticket, ticket["id"]).closed_at == closed_at


def test_other_users_cannot_read(client, settings, db, ticket):
    other = make_user(db, UserRole.deliveryPartner)
    resp = client.get(f"/api/tickets/{ticket['id']}", headers=auth_headers(settings, other))
    assert resp.status_code == 403


def test_buyers_cannot_open_tickets(client, settings, db):
    buyer = make_user(db)
    resp = client.post(
        "/api/tickets",
        json={"issue_type": "other", "subject": "hi", "description": "hello"},
        headers=auth_headers(settings, buyer),
    )
    assert resp.status_code == 403


def test_invalid_issue_type(client, settings, db):
    partner = make_user(db, UserRole.deliveryPartner)
    resp = client.post(
        "/api/tickets",
        json={"issue_type": "weather", "subject": "Rain", "description": "Too wet"},
        headers=auth_headers(settings, partner),
    )
    assert resp.status_code == 400


def test_admin_filters(client, settings, db, ticket):
    partner = make_user(db, UserRole.deliveryPartner)
    client.post(
        "/api/tickets",
        json={"issue_type": "vehicle_issue", "subject": "Flat tyre", "description": "Need help"},
        headers=auth_headers(settings, partner),
    )
    admin = ticket["admin_headers"]

    by_type = client.get("/api/admin/tickets?user_type=deliveryPartner", headers=admin).json()["data"]
    by_issue = client.get("/api/admin/tickets?issue_type=payment_issue", headers=admin).json()["data"]

    assert [t["subject"] for t in by_type] == ["Flat tyre"]
    assert [t["id"] for t in by_issue] == [ticket["id"]]
