"""
Loan request endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import FundSystem, get_fund_system
from .schemas import RejectLoanRequestRequest, SubmitLoanRequestRequest, waiting_list_to_list
from ..receipts import ReviewStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def submit_loan_request(
    request: SubmitLoanRequestRequest,
    system: FundSystem = Depends(get_fund_system)
):
    loan_request = system.loan_request_manager.submit_request(
        request.telegram_chat_id, request.user_name
    )
    return loan_request.to_dict()


@router.get("")
def list_loan_requests(
    status: Optional[ReviewStatus] = None,
    system: FundSystem = Depends(get_fund_system)
):
    return [r.to_dict() for r in system.loan_request_manager.list_requests(status)]


@router.get("/waiting-list")
def get_waiting_list(system: FundSystem = Depends(get_fund_system)):
    """Approved requests in arrival order, with each member's loan state"""
    return waiting_list_to_list(system.loan_request_manager.waiting_list())


@router.post("/{request_id}/approve")
def approve_loan_request(request_id: str, system: FundSystem = Depends(get_fund_system)):
    return system.loan_request_manager.approve(request_id).to_dict()


@router.post("/{request_id}/reject")
def reject_loan_request(
    request_id: str,
    request: RejectLoanRequestRequest,
    system: FundSystem = Depends(get_fund_system)
):
    return system.loan_request_manager.reject(request_id, request.reason).to_dict()
