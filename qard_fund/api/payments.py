"""
Payment and withdrawal endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import FundSystem, get_fund_system
from .schemas import (
    PaymentPreviewRequest, SubmitPaymentRequest, WithdrawalRequest,
    classification_to_dict, ledger_result_to_dict, outcome_to_dict
)
from ..ledger import PaymentType


router = APIRouter()


@router.post("/preview")
def preview_payment(
    request: PaymentPreviewRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """Classify a payment without posting it"""
    classification = system.payment_processor.preview(
        request.member_id, request.intent, request.amount
    )
    return classification_to_dict(classification)


@router.post("")
def submit_payment(
    request: SubmitPaymentRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """
    Post a payment. Splits that need confirmation come back with status
    ``confirmation_required`` until resent with ``confirmed: true``.
    """
    outcome = system.payment_processor.submit(
        request.member_id,
        request.intent,
        request.amount,
        request.date,
        note=request.note,
        confirmed=request.confirmed,
        receipt_image_path=request.receipt_image_path
    )
    return outcome_to_dict(outcome)


@router.get("")
def list_payments(
    type: Optional[PaymentType] = None,
    system: FundSystem = Depends(get_fund_system)
):
    return [p.to_dict() for p in system.payment_processor.list_payments(type)]


@router.post("/withdrawals", status_code=status.HTTP_201_CREATED)
def withdraw(
    request: WithdrawalRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """Withdraw from a member's deposit"""
    result = system.payment_processor.withdraw(
        request.member_id,
        request.amount,
        request.mode,
        date=request.date,
        card_number=request.card_number
    )
    return ledger_result_to_dict(result)
