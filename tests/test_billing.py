import hashlib
import hmac
import json
import time

import pytest
from bson import ObjectId

import config
from billing import handle_billing_event

SECRET = "whsec_test"


def signed(payload: str, secret: str = SECRET) -> dict:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


def event(kind: str, obj: dict) -> str:
    return json.dumps({"id": "evt_1", "type": kind, "data": {"object": obj}})


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", SECRET)


@pytest.fixture
def team_id(db, make_user, make_team):
    _, owner_id = make_user("owner@example.com")
    return make_team(owner_id)


def checkout(team_id, subscription="sub_1"):
    return event("checkout.session.completed", {
        "id": "cs_1",
        "customer": "cus_1",
        "subscription": subscription,
        "metadata": {"teamId": team_id, "userId": "u1"},
    })


def test_checkout_completed_twice_upgrades_once(client, db, team_id):
    payload = checkout(team_id)
    for _ in range(2):
        resp = client.post("/webhooks/stripe", content=payload, headers=signed(payload))
        assert resp.status_code == 200
        assert resp.json()["status"] == "processed"

    team = db["team"].find_one({"_id": ObjectId(team_id)})
    assert team["plan"] == "Pro"
    assert team["promptLimit"] == 1000
    assert team["stripeSubscriptionId"] == "sub_1"
    assert db["auditlog"].count_documents({"action": "upgrade_plan"}) == 1


def test_canceled_downgrades_and_later_active_is_ignored(client, db, team_id):
    db["team"].update_one(
        {"_id": ObjectId(team_id)},
        {"$set": {"plan": "Pro", "promptLimit": 1000, "stripeSubscriptionId": "sub_1"}},
    )

    canceled = event("customer.subscription.updated", {"id": "sub_1", "status": "canceled", "customer": "cus_1"})
    resp = client.post("/webhooks/stripe", content=canceled, headers=signed(canceled))
    assert resp.json()["status"] == "processed"

    active = event("customer.subscription.updated", {"id": "sub_1", "status": "active", "customer": "cus_1"})
    resp = client.post("/webhooks/stripe", content=active, headers=signed(active))
    assert resp.json()["status"] == "ignored"

    team = db["team"].find_one({"_id": ObjectId(team_id)})
    assert team["plan"] == "Free"
    assert team["promptLimit"] == 50
    log = db["auditlog"].find_one({"action": "downgrade_plan"})
    assert log["details"]["oldPlan"] == "Pro"
    assert log["targetId"] == team_id


def test_subscription_deleted_downgrades(db, team_id):
    db["team"].update_one({"_id": ObjectId(team_id)}, {"$set": {"plan": "Pro", "stripeSubscriptionId": "sub_9"}})

    outcome = handle_billing_event(db, json.loads(event("customer.subscription.deleted", {"id": "sub_9", "status": "active"})))

    assert outcome.status == "processed"
    assert db["team"].find_one({"_id": ObjectId(team_id)})["plan"] == "Free"


def test_bad_signature_is_rejected(client, db, team_id):
    payload = checkout(team_id)
    resp = client.post("/webhooks/stripe", content=payload, headers=signed(payload, "whsec_wrong"))

    assert resp.status_code == 400
    assert db["team"].find_one({"_id": ObjectId(team_id)})["plan"] == "Free"


def test_missing_secret_is_a_server_error(client, monkeypatch, team_id):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)
    payload = checkout(team_id)
    resp = client.post("/webhooks/stripe", content=payload, headers=signed(payload))
    assert resp.status_code == 500


def test_unhandled_event_is_acknowledged(client):
    payload = event("invoice.paid", {"id": "in_1"})
    resp = client.post("/webhooks/stripe", content=payload, headers=signed(payload))

    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_checkout_without_team_is_ignored(db):
    outcome = handle_billing_event(db, json.loads(event("checkout.session.completed", {
        "id": "cs_2", "customer": "cus_1", "subscription": "sub_1", "metadata": {},
    })))
    assert outcome.status == "ignored"
    assert db["auditlog"].count_documents({}) == 0


def test_checkout_for_unknown_team_is_ignored(db):
    outcome = handle_billing_event(db, json.loads(checkout(str(ObjectId()))))
    assert outcome.status == "ignored"


def test_checkout_route_requires_team_admin(client, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    _, member_id = make_user("member@example.com")
    team_id = make_team(owner_id, members=[(member_id, "member")])

    resp = client.post("/billing/checkout", json={"teamId": team_id}, headers=auth_headers(member_id))
    assert resp.status_code == 403


def test_checkout_route_creates_session(client, db, make_user, make_team, auth_headers, monkeypatch):
    import billing_routes

    class Session:
        id = "cs_123"
        url = "https://checkout.stripe.test/cs_123"

    monkeypatch.setattr(config, "STRIPE_PRO_TEAM_PRICE_ID", "price_pro")
    monkeypatch.setattr(billing_routes, "get_or_create_customer", lambda db, user: "cus_1")
    monkeypatch.setattr(billing_routes, "create_checkout_session", lambda *args, **kwargs: Session())
    _, owner_id = make_user("owner@example.com")
    team_id = make_team(owner_id)

    resp = client.post("/billing/checkout", json={"teamId": team_id}, headers=auth_headers(owner_id))

    assert resp.status_code == 200
    assert resp.json() == {"sessionId": "cs_123", "url": "https://checkout.stripe.test/cs_123"}


def test_portal_without_customer_is_rejected(client, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    team_id = make_team(owner_id)

    resp = client.post("/billing/portal", json={"teamId": team_id}, headers=auth_headers(owner_id))
    assert resp.status_code == 400
