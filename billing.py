"""
Subscription lifecycle for team plans.

Stripe notifications move a team between ``Free`` and ``Pro``:

- ``checkout.session.completed`` upgrades the team named in the session
  metadata and stores the Stripe customer/subscription ids.
- ``customer.subscription.updated`` / ``customer.subscription.deleted``
  downgrade the team holding that subscription once its status is no longer
  ``active`` or ``trialing``. An active status never upgrades.

Every transition writes an audit event. Notifications this service does not
model, or that lack the identifiers it needs, are acknowledged and skipped so
Stripe does not retry them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.database import Database

from audit import record_audit_event
import config
from plan_limits import team_prompt_limit

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

ACTIVE_STATUSES = ("active", "trialing")

PROCESSED = "processed"
IGNORED = "ignored"


@dataclass
class BillingOutcome:
    status: str
    message: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"received": True, "status": self.status}
        if self.message:
            body["message"] = self.message
        return body


def verify_notification(payload: bytes, signature: Optional[str], secret: str) -> dict:
    """Check the Stripe-Signature header and return the decoded event.

    Raises ``stripe.SignatureVerificationError`` when the signature does not match.
    """
    stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature or "", secret)
    return json.loads(payload)


def apply_plan(db: Database, team_filter: dict, plan: str, extra: Optional[dict] = None) -> Optional[dict]:
    """Set ``plan`` and the derived ``promptLimit`` in one update. Returns the team as it was before."""
    update = {"plan": plan, "promptLimit": team_prompt_limit(plan)}
    if extra:
        update.update(extra)
    return db["team"].find_one_and_update(
        team_filter,
        {"$set": update},
        return_document=ReturnDocument.BEFORE,
    )


def handle_checkout_completed(db: Database, session: dict) -> BillingOutcome:
    metadata = session.get("metadata") or {}
    team_id = metadata.get("teamId")
    customer_id = session.get("customer")
    subscription_id = session.get("subscription")

    if not team_id or not customer_id or not subscription_id:
        logger.error(f"Checkout session {session.get('id')} is missing teamId, customer or subscription")
        return BillingOutcome(IGNORED, "Missing required data in event")
    try:
        team_oid = ObjectId(team_id)
    except InvalidId:
        logger.error(f"Checkout session {session.get('id')} carries an invalid teamId {team_id!r}")
        return BillingOutcome(IGNORED, "Invalid team id")

    before = apply_plan(
        db,
        {"_id": team_oid},
        "Pro",
        {"stripeCustomerId": customer_id, "stripeSubscriptionId": subscription_id},
    )
    if before is None:
        logger.error(f"Team {team_id} not found during checkout completion")
        return BillingOutcome(IGNORED, "Team not found")

    old_plan = before.get("plan", "Free")
    if old_plan == "Pro" and before.get("stripeSubscriptionId") == subscription_id:
        logger.info(f"Checkout for team {team_id} already applied")
        return BillingOutcome(PROCESSED)

    record_audit_event(
        db,
        "upgrade_plan",
        user_id=metadata.get("userId"),
        target_type="team",
        target_id=team_id,
        details={
            "oldPlan": old_plan,
            "newPlan": "Pro",
            "reason": "checkout_completed",
            "stripeCustomerId": customer_id,
            "stripeSubscriptionId": subscription_id,
        },
    )
    logger.info(f"Team {team_id} upgraded to Pro, subscription {subscription_id}")
    return BillingOutcome(PROCESSED)


def handle_subscription_change(db: Database, subscription: dict, deleted: bool = False) -> BillingOutcome:
    subscription_id = subscription.get("id")
    status = subscription.get("status")
    if not subscription_id:
        logger.error("Subscription event without a subscription id")
        return BillingOutcome(IGNORED, "Missing subscription id")

    if not deleted and status in ACTIVE_STATUSES:
        logger.info(f"Subscription {subscription_id} is still {status}, nothing to do")
        return BillingOutcome(IGNORED, "Subscription still active")

    before = apply_plan(db, {"stripeSubscriptionId": subscription_id}, "Free")
    if before is None:
        logger.warning(f"No team found for subscription {subscription_id}")
        return BillingOutcome(IGNORED, "Team not found")

    old_plan = before.get("plan", "Free")
    if old_plan != "Free":
        record_audit_event(
            db,
            "downgrade_plan",
            user_id=None,
            target_type="team",
            target_id=str(before["_id"]),
            details={
                "oldPlan": old_plan,
                "newPlan": "Free",
                "reason": f"Subscription status: {'deleted' if deleted else status}",
                "stripeSubscriptionId": subscription_id,
                "stripeCustomerId": subscription.get("customer"),
            },
        )
        logger.info(f"Team {before['_id']} downgraded to Free ({status})")
    return BillingOutcome(PROCESSED)


def handle_billing_event(db: Database, event: dict) -> BillingOutcome:
    """Dispatch a verified Stripe event. Store errors propagate to the caller."""
    kind = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if kind == CHECKOUT_COMPLETED:
        return handle_checkout_completed(db, obj)
    if kind == SUBSCRIPTION_UPDATED:
        return handle_subscription_change(db, obj)
    if kind == SUBSCRIPTION_DELETED:
        return handle_subscription_change(db, obj, deleted=True)

    logger.info(f"Unhandled Stripe event type: {kind}")
    return BillingOutcome(IGNORED, f"Unhandled event type {kind}")


# Outbound calls to Stripe

def get_or_create_customer(db: Database, user: dict) -> str:
    customer_id = user.get("stripeCustomerId")
    if customer_id:
        return customer_id
    customer = stripe.Customer.create(
        api_key=config.STRIPE_SECRET_KEY,
        email=user.get("email"),
        metadata={"userId": str(user["_id"])},
    )
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"stripeCustomerId": customer.id}})
    logger.info(f"Stripe customer {customer.id} created for user {user['_id']}")
    return customer.id


def create_checkout_session(customer_id: str, team_id: str, user_id: str, success_url: str, cancel_url: str):
    return stripe.checkout.Session.create(
        api_key=config.STRIPE_SECRET_KEY,
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": config.STRIPE_PRO_TEAM_PRICE_ID, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"teamId": team_id, "userId": user_id},
    )


def create_portal_session(customer_id: str, return_url: str):
    return stripe.billing_portal.Session.create(
        api_key=config.STRIPE_SECRET_KEY,
        customer=customer_id,
        return_url=return_url,
    )
