# billing_server/api/payment_router.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billing_server.api.deps import current_actor, get_db
from billing_server.schemas.payment import PaymentCreate, PaymentList, PaymentOut, PaymentResponse, ProofUpload
from billing_server.services import payment_service
from billing_server.services.actor import Actor

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentResponse)
async def create_payment(
    body: PaymentCreate,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Open a bank-transfer payment request after the user picks a package."""
    payment = await payment_service.create_payment(
        db,
        actor,
        package_name=body.package_name,
        package_type=body.package_type,
        amount=body.amount,
        duration_months=body.duration_months,
    )
    return PaymentResponse(
        message="Payment request created. Please upload payment proof.",
        payment=PaymentOut.model_validate(payment),
    )


@router.get("", response_model=PaymentList)
async def list_my_payments(actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    payments = await payment_service.list_user_payments(db, actor)
    return PaymentList(payments=[PaymentOut.model_validate(p) for p in payments])


@router.post("/{payment_id}/proof", response_model=PaymentResponse)
async def upload_proof(
    payment_id: int,
    body: ProofUpload,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_db),
):
    payment = await payment_service.upload_proof(db, actor, payment_id, body.proof_ref)
    return PaymentResponse(
        message="Payment proof uploaded successfully. Waiting for admin verification.",
        payment=PaymentOut.model_validate(payment),
    )


@router.delete("/{payment_id}", response_model=PaymentResponse)
async def cancel_payment(
    payment_id: int,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_db),
):
    payment = await payment_service.cancel_payment(db, actor, payment_id)
    return PaymentResponse(message="Payment canceled successfully", payment=PaymentOut.model_validate(payment))
