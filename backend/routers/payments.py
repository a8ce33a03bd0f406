# routers/payments.py — Pending certificates, payment intents, payment confirmation
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from certificate_lifecycle import certificates
from database import get_db_session
from payments import PaymentProvider, PaymentProviderError, get_payment_provider
from results import unwrap
from routers.certificates import certificate_out

router = APIRouter(prefix="/api/v1", tags=["Payments"])
logger = logging.getLogger("certisphere.payments")


class PayCertificateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    certificate_id: Optional[int] = Field(None, alias="certificateId")


@router.get("/my-pending-certificates")
async def my_pending_certificates(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": True, "certificates": await certificates.pending_for_owner(db, user.id)}


@router.post("/pay-certificate")
async def pay_certificate(
    data: PayCertificateRequest,
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
    user: CurrentUser = Depends(get_current_user),
):
    """Creates a payment intent and freezes the certificate's type and price"""
    if not data.certificate_id:
        raise HTTPException(400, "Missing certificateId")
    amount = unwrap(await certificates.payable_amount(db, data.certificate_id, user.id))

    try:
        handle = await provider.create_intent(
            amount,
            f"Certificate #{data.certificate_id}",
            metadata={"certificate_id": str(data.certificate_id), "user_id": str(user.id)},
        )
    except PaymentProviderError as e:
        logger.error(f"pay-certificate failed for certificate={data.certificate_id}: {e}")
        raise HTTPException(502, "Payment provider unavailable")

    unwrap(await certificates.record_payment_started(db, data.certificate_id, user.id, amount, handle.intent_id))
    return {
        "success": True,
        "client_secret": handle.client_secret,
        "amount": handle.amount,
        "currency": handle.currency,
    }


@router.patch("/certificates/{certificate_id}/mark-paid")
async def mark_paid(
    certificate_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    cert = unwrap(await certificates.confirm_payment(db, certificate_id, user.id))
    return {"success": True, "certificate": certificate_out(cert)}


@router.get("/my-payments")
async def my_payments(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": True, "payments": await certificates.payments(db, user_id=user.id)}
