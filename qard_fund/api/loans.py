"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import FundSystem, get_fund_system
from .schemas import DisburseLoanRequest, statement_to_dict
from ..loans import LoanStatus, lending_ceiling, loan_to_summary


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def disburse_loan(
    request: DisburseLoanRequest,
    system: FundSystem = Depends(get_fund_system)
):
    """Disburse a new loan"""
    loan = system.loan_manager.disburse_loan(
        member_id=request.member_id,
        amount=request.amount,
        date=request.date,
        due_months=request.due_months,
        note=request.note
    )
    return loan_to_summary(loan)


@router.get("")
def list_loans(
    status: Optional[LoanStatus] = None,
    system: FundSystem = Depends(get_fund_system)
):
    return [loan_to_summary(loan) for loan in system.loan_manager.list_loans(status)]


@router.get("/ceiling")
def get_lending_ceiling(system: FundSystem = Depends(get_fund_system)):
    """Largest loan the fund can currently disburse"""
    return {"ceiling": lending_ceiling(system.member_manager.list_members())}


@router.get("/{loan_id}")
def get_loan(loan_id: str, system: FundSystem = Depends(get_fund_system)):
    return loan_to_summary(system.loan_manager.require_loan(loan_id))


@router.get("/{loan_id}/statement")
def get_loan_statement(loan_id: str, system: FundSystem = Depends(get_fund_system)):
    """Installment schedule with paid months and remaining balance"""
    return statement_to_dict(system.loan_manager.loan_statement(loan_id))


@router.post("/{loan_id}/settle")
def settle_loan(loan_id: str, system: FundSystem = Depends(get_fund_system)):
    return loan_to_summary(system.loan_manager.settle_loan(loan_id))
