"""
Member endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import FundSystem, get_fund_system
from .schemas import CreateMemberRequest, payment_rows_to_list
from ..ledger import PaymentType
from ..loans import loan_to_summary
from ..members import MemberStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_member(
    request: CreateMemberRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """Register a new member"""
    member = system.member_manager.create_member(
        full_name=request.full_name,
        phone=request.phone,
        monthly_amount=request.monthly_amount,
        national_id=request.national_id,
        join_date=request.join_date,
        telegram_chat_id=request.telegram_chat_id
    )
    return member.to_dict()


@router.get("")
def list_members(
    status: Optional[MemberStatus] = None,
    system: FundSystem = Depends(get_fund_system)
):
    """List members"""
    return [m.to_dict() for m in system.member_manager.list_members(status)]


@router.get("/{member_id}")
def get_member(member_id: str, system: FundSystem = Depends(get_fund_system)):
    """Get member details"""
    return system.member_manager.require_member(member_id).to_dict()


@router.post("/{member_id}/deactivate")
def deactivate_member(member_id: str, system: FundSystem = Depends(get_fund_system)):
    return system.member_manager.deactivate_member(member_id).to_dict()


@router.post("/{member_id}/activate")
def activate_member(member_id: str, system: FundSystem = Depends(get_fund_system)):
    return system.member_manager.activate_member(member_id).to_dict()


@router.get("/{member_id}/payments")
def get_member_payments(
    member_id: str,
    type: Optional[PaymentType] = None,
    system: FundSystem = Depends(get_fund_system)
):
    """A member's payments, newest first"""
    system.member_manager.require_member(member_id)
    payments = system.payment_processor.get_member_payments(member_id, type)
    return [p.to_dict() for p in payments]


@router.get("/{member_id}/payment-history")
def get_member_payment_history(member_id: str, system: FundSystem = Depends(get_fund_system)):
    """Payment history with same-date installment and deposit combined"""
    return payment_rows_to_list(system.reporting.member_payment_rows(member_id))


@router.get("/{member_id}/loans")
def get_member_loans(member_id: str, system: FundSystem = Depends(get_fund_system)):
    system.member_manager.require_member(member_id)
    return [loan_to_summary(loan) for loan in system.loan_manager.get_member_loans(member_id)]
