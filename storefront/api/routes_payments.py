import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from storefront.api.deps import get_db
from storefront.api.schemas import PaymentEvent
from storefront.core.config import settings
from storefront.core.errors import UnauthorizedError
from storefront.db.models import PaymentStatus
from storefront.services.orders import apply_payment_event

router = APIRouter()


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret")):
    if not x_webhook_secret or not secrets.compare_digest(x_webhook_secret, settings.PAYMENT_WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid webhook secret")
    return True


@router.post("/v1/payments/webhook")
def payment_webhook(event: PaymentEvent, db: Session = Depends(get_db), _=Depends(verify_webhook_secret)):
    order = apply_payment_event(db, event.model_dump())
    return {
        "success": True,
        "data": {
            "received": True,
            "order_number": order.order_number if order else None,
            "payment_status": PaymentStatus(order.payment_status).value if order else None,
        },
    }
