from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from billing_server.models.enums import ApprovalStep, PaymentMethod, PaymentStatus


class PaymentCreate(BaseModel):
    package_name: str
    package_type: str
    amount: Decimal
    duration_months: int = Field(default=1, ge=1, le=120)


class ProofUpload(BaseModel):
    # Reference returned by the file storage service (URL or path)
    proof_ref: str


class ApproveRequest(BaseModel):
    admin_notes: Optional[str] = None


class RejectRequest(BaseModel):
    rejection_reason: str = ""
    admin_notes: Optional[str] = None


class PremiumUpdate(BaseModel):
    is_premium: bool
    duration_months: Optional[int] = Field(default=1, ge=1, le=120)


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    package_name: str
    package_type: str
    amount: Decimal
    currency: Optional[str] = None
    duration_months: Optional[int] = None
    payment_method: PaymentMethod
    status: PaymentStatus
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_account_name: Optional[str] = None
    payment_proof_url: Optional[str] = None
    payment_proof_uploaded_at: Optional[datetime] = None
    gateway_session_id: Optional[str] = None
    gateway_invoice_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    admin_notes: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    approval_step: Optional[ApprovalStep] = None
    created_at: datetime
    updated_at: datetime


class PaymentResponse(BaseModel):
    success: bool = True
    message: str
    payment: PaymentOut


class ApprovalResponse(PaymentResponse):
    completed: bool
    premium_expires_at: Optional[datetime] = None
    failed_step: Optional[ApprovalStep] = None
    error: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaymentList(BaseModel):
    success: bool = True
    payments: List[PaymentOut]
    pagination: Optional[Pagination] = None
