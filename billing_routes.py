import logging

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database

import config
from auth import get_current_user
from billing import create_checkout_session, create_portal_session, get_or_create_customer, handle_billing_event, verify_notification
from database import get_db
from errors import AuthorizationError, PromptProError, ValidationFailed
from permissions import Capability, has_capability
from prompt_routes import get_team_or_404

logger = logging.getLogger(__name__)

router = APIRouter()


class TeamBillingRequest(BaseModel):
    teamId: str


def require_billing_manager(team: dict, user_id: str) -> None:
    if not has_capability(team, user_id, Capability.MANAGE_TEAM_SETTINGS):
        raise AuthorizationError("User is not authorized to manage this team's billing")


@router.post("/billing/checkout")
def start_checkout(payload: TeamBillingRequest, request: Request, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = get_team_or_404(db, payload.teamId)
    require_billing_manager(team, user_id)
    if team.get("plan") == "Pro" and team.get("stripeSubscriptionId"):
        raise ValidationFailed({"teamId": "Team is already on the Pro plan"}, detail="Team is already on the Pro plan")
    if not config.STRIPE_PRO_TEAM_PRICE_ID:
        logger.error("STRIPE_PRO_TEAM_PRICE_ID is not set")
        raise PromptProError("Server configuration error")

    customer_id = get_or_create_customer(db, current_user)
    origin = request.headers.get("origin") or config.FRONTEND_URL
    session = create_checkout_session(
        customer_id,
        team_id=payload.teamId,
        user_id=user_id,
        success_url=f"{origin}/teams/{payload.teamId}?checkout=success",
        cancel_url=f"{origin}/teams/{payload.teamId}?checkout=cancel",
    )
    logger.info(f"Checkout session {session.id} created for team {payload.teamId} by {user_id}")
    return {"sessionId": session.id, "url": session.url}


@router.post("/billing/portal")
def open_billing_portal(payload: TeamBillingRequest, request: Request, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    team = get_team_or_404(db, payload.teamId)
    require_billing_manager(team, str(current_user["_id"]))
    if not team.get("stripeCustomerId"):
        if team.get("plan") == "Pro":
            logger.error(f"Team {payload.teamId} is Pro but has no Stripe customer id")
            raise PromptProError("Billing configuration error for this team")
        raise ValidationFailed({"teamId": "This team does not have an active subscription to manage"})

    origin = request.headers.get("origin") or config.FRONTEND_URL
    session = create_portal_session(team["stripeCustomerId"], return_url=f"{origin}/teams/{payload.teamId}")
    return {"url": session.url}


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: Database = Depends(get_db)):
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        return JSONResponse(status_code=500, content={"detail": "Webhook secret not configured"})

    payload = await request.body()
    try:
        event = verify_notification(payload, request.headers.get("stripe-signature"), config.STRIPE_WEBHOOK_SECRET)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.error(f"Rejected Stripe webhook: {e}")
        return JSONResponse(status_code=400, content={"detail": f"Webhook Error: {e}"})

    logger.info(f"Stripe event {event.get('id')} received: {event.get('type')}")
    # Store errors propagate as a 500 so Stripe retries the delivery.
    outcome = handle_billing_event(db, event)
    return outcome.to_dict()
