"""
Pydantic schemas for API requests, and serializers for responses
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..classifier import Classification, PaymentIntent
from ..ledger import LedgerResult, WithdrawalMode
from ..loans import LoanStatement, loan_to_summary
from ..payments import PaymentOutcome
from ..receipts import WaitingListEntry
from ..reporting import DepositOverviewRow, PaymentRow


# Member schemas
class CreateMemberRequest(BaseModel):
    full_name: str
    phone: str
    monthly_amount: int = Field(0, ge=0, description="Contracted monthly deposit")
    national_id: Optional[str] = None
    join_date: Optional[str] = None
    telegram_chat_id: Optional[str] = None


# Payment schemas
class PaymentPreviewRequest(BaseModel):
    member_id: str
    intent: PaymentIntent
    amount: int = Field(..., description="Amount in whole currency units")


class SubmitPaymentRequest(PaymentPreviewRequest):
    date: str = Field(..., description="Payment date, YYYY-MM-DD or YYYY/MM/DD")
    note: Optional[str] = None
    confirmed: bool = Field(False, description="Operator accepted the split preview")
    receipt_image_path: Optional[str] = None


class WithdrawalRequest(BaseModel):
    member_id: str
    amount: int
    mode: WithdrawalMode
    date: Optional[str] = None
    card_number: Optional[str] = Field(None, description="Required for transfer withdrawals")


# Loan schemas
class DisburseLoanRequest(BaseModel):
    member_id: str
    amount: int
    date: str
    due_months: Optional[int] = Field(None, description="Term in months, default from config")
    note: Optional[str] = None


# Receipt schemas
class SubmitReceiptRequest(BaseModel):
    member_id: str
    image_path: str
    note: Optional[str] = None


class ApproveReceiptRequest(BaseModel):
    amount: int
    date: str
    type: PaymentIntent
    confirmed: bool = False
    note: Optional[str] = None


class RejectReceiptRequest(BaseModel):
    message: Optional[str] = None


# Loan request schemas
class SubmitLoanRequestRequest(BaseModel):
    telegram_chat_id: str
    user_name: str


class RejectLoanRequestRequest(BaseModel):
    reason: Optional[str] = None


def classification_to_dict(classification: Classification) -> Dict[str, Any]:
    return {
        "decision": classification.decision.value,
        "intent": classification.intent.value,
        "amount": classification.amount,
        "installment": classification.installment,
        "repayment_amount": classification.repayment_amount,
        "contribution_amount": classification.contribution_amount,
        "rule": classification.rule.value,
        "reason": classification.reason.value if classification.reason else None,
        "message": classification.message,
        "warning": classification.warning,
    }


def ledger_result_to_dict(result: LedgerResult) -> Dict[str, Any]:
    return {
        "member": result.member.to_dict(),
        "payments": [p.to_dict() for p in result.payments],
        "fund_log": [e.to_dict() for e in result.fund_log],
    }


def outcome_to_dict(outcome: PaymentOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "classification": classification_to_dict(outcome.classification),
        "member": outcome.member.to_dict() if outcome.member else None,
        "payments": [p.to_dict() for p in outcome.payments],
    }


def statement_to_dict(statement: LoanStatement) -> Dict[str, Any]:
    return {
        "loan": loan_to_summary(statement.loan),
        "member_id": statement.member.id,
        "member_name": statement.member.full_name,
        "installment": statement.installment,
        "first_due_date": statement.first_due_date,
        "last_due_date": statement.last_due_date,
        "total_repaid": statement.total_repaid,
        "remaining": statement.remaining,
        "paid_months": statement.paid_months,
        "has_deposit_deduction": statement.has_deposit_deduction,
        "schedule": [
            {
                "month_index": row.month_index,
                "due_date": row.due_date,
                "threshold": row.threshold,
                "is_paid": row.is_paid,
            }
            for row in statement.schedule
        ],
    }


def payment_rows_to_list(rows: List[PaymentRow]) -> List[Dict[str, Any]]:
    return [
        {
            "kind": row.kind.value,
            "date": row.date,
            "total_amount": row.total_amount,
            "repayment_amount": row.repayment_amount,
            "contribution_amount": row.contribution_amount,
            "note": row.note,
            "receipt_image_path": row.receipt_image_path,
            "is_excess_contribution": row.is_excess_contribution,
            "payment_ids": [p.id for p in row.payments],
        }
        for row in rows
    ]


def deposits_overview_to_list(rows: List[DepositOverviewRow]) -> List[Dict[str, Any]]:
    return [
        {
            "member_id": row.member.id,
            "full_name": row.member.full_name,
            "deposit": row.member.deposit,
            "contributions_count": row.contributions_count,
            "contributions_total": row.contributions_total,
        }
        for row in rows
    ]


def waiting_list_to_list(entries: List[WaitingListEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "request": entry.request.to_dict(),
            "member_id": entry.member.id if entry.member else None,
            "member_name": entry.member.full_name if entry.member else None,
            "has_active_loan": entry.has_active_loan,
        }
        for entry in entries
    ]
