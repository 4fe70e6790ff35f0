import logging
import secrets
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from config import SERVICE_FEE_RATE
from helpers import get_db, ok, oid
from routers.bookings import booking_total
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class PaymentIntentPayload(BaseModel):
    game_id: str
    number_of_seats: int = Field(..., ge=1, le=20)


@router.post("/create-payment-intent")
def create_payment_intent(payload: PaymentIntentPayload, current_user=Depends(get_current_user)):
    game = get_db()["game"].find_one({"_id": oid(payload.game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    base_amount = booking_total(game, payload.number_of_seats)
    service_fee = round(base_amount * SERVICE_FEE_RATE, 2)
    total = base_amount + service_fee

    # Mocked: no payment provider is contacted
    intent_id = f"pi_mock_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
    return ok(
        {
            "payment_intent_id": intent_id,
            "client_secret": f"{intent_id}_secret_mock",
            "base_amount": round(base_amount, 2),
            "service_fee": service_fee,
            "amount": round(total * 100),
            "currency": game.get("currency", "USD"),
        },
        "Payment intent created successfully",
    )


@router.post("/webhook")
async def webhook(request: Request):
    body = await request.body()
    logger.info("Payment webhook received (%d bytes)", len(body))
    return {"received": True}
