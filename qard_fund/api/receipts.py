"""
Receipt submission endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import FundSystem, get_fund_system
from .schemas import (
    ApproveReceiptRequest, RejectReceiptRequest, SubmitReceiptRequest, outcome_to_dict
)
from ..receipts import ReviewStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def submit_receipt(
    request: SubmitReceiptRequest,
    system: FundSystem = Depends(get_fund_system)
):
    receipt = system.receipt_manager.submit_receipt(
        request.member_id, request.image_path, note=request.note
    )
    return receipt.to_dict()


@router.get("")
def list_receipts(
    status: Optional[ReviewStatus] = None,
    system: FundSystem = Depends(get_fund_system)
):
    return [r.to_dict() for r in system.receipt_manager.list_receipts(status)]


@router.post("/{receipt_id}/approve")
def approve_receipt(
    receipt_id: str,
    request: ApproveReceiptRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """Post a receipt as a payment of the given type"""
    outcome = system.receipt_manager.approve(
        receipt_id,
        amount=request.amount,
        date=request.date,
        intent=request.type,
        confirmed=request.confirmed,
        note=request.note
    )
    return outcome_to_dict(outcome)


@router.post("/{receipt_id}/reject")
def reject_receipt(
    receipt_id: str,
    request: RejectReceiptRequest,
    system: FundSystem = Depends(get_fund_system)
):
    return system.receipt_manager.reject(receipt_id, request.message).to_dict()
