"""
Installment Calculator Module

Fixed monthly installments for interest-free loans, the due-date schedule and
the watermark rule that infers which months are paid from the total repaid.
"""

from dataclasses import dataclass
from typing import List, Optional

from .dates import add_months_to_date
from .exceptions import ValidationError


@dataclass(frozen=True)
class DueScheduleEntry:
    """One month of a loan's repayment schedule"""
    month_index: int            # 1-based
    due_date: str               # YYYY-MM-DD


@dataclass(frozen=True)
class InstallmentRow:
    """Schedule entry with its inferred paid status"""
    month_index: int
    due_date: str
    threshold: int              # Cumulative repayment needed to cover this month
    is_paid: bool


def compute_installment(principal: int, term_months: int) -> int:
    """
    Fixed monthly installment: ``floor(principal / term_months)``.

    A term below one month is treated as one. The division remainder is not
    tracked; it is absorbed by the member's loan balance.
    """
    if principal < 0:
        raise ValidationError("Loan principal must not be negative", "invalid_amount")
    return principal // max(1, term_months)


def compute_due_schedule(disbursement_date: str, term_months: int) -> List[DueScheduleEntry]:
    """Due date of every month: the disbursement date plus k months (k = 1..term)"""
    return [
        DueScheduleEntry(month_index=k, due_date=add_months_to_date(disbursement_date, k))
        for k in range(1, term_months + 1)
    ]


def is_month_paid(month_index: int, cumulative_repaid: int, installment: int) -> bool:
    """
    Watermark paid-status: month k counts as paid once the total repaid
    reaches ``k * installment``, regardless of which payment covered it.
    """
    return cumulative_repaid >= month_index * installment


def build_installment_schedule(
    disbursement_date: str,
    term_months: int,
    installment: int,
    cumulative_repaid: int
) -> List[InstallmentRow]:
    """Combine the due schedule with watermark paid flags"""
    return [
        InstallmentRow(
            month_index=entry.month_index,
            due_date=entry.due_date,
            threshold=entry.month_index * installment,
            is_paid=is_month_paid(entry.month_index, cumulative_repaid, installment)
        )
        for entry in compute_due_schedule(disbursement_date, term_months)
    ]


def first_due_date(disbursement_date: str) -> str:
    """First installment falls due one month after disbursement"""
    return add_months_to_date(disbursement_date, 1)


def last_due_date(disbursement_date: str, term_months: int) -> Optional[str]:
    """Last installment due date, or None for a loan without a term"""
    if term_months <= 0:
        return None
    return add_months_to_date(disbursement_date, term_months)
