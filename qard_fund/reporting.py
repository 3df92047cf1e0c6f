"""
Reporting Module

Fund dashboard figures, per-member payment history and the deposits
overview. Everything here is read-only and derived from member balances,
payment records, loans and the fund log.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum

from .ledger import FundLogEntry, FundLogType, Payment, PaymentType
from .loans import LoanManager, lending_ceiling
from .members import Member, MemberManager, total_deposits, total_loan_balance
from .storage import StorageInterface


class RowKind(Enum):
    """Payment history row kinds"""
    SINGLE = "single"
    COMBINED = "combined"       # Same-date installment and deposit shown together


@dataclass
class FundSummary:
    """Fund-wide dashboard figures"""
    total_deposits: int
    total_loan_balance: int
    fund_online: int                # Deposits not currently lent out
    lending_ceiling: int
    total_contributions: int
    total_repayments: int
    active_loans_principal: int
    cash_balance: int               # Contributions + repayments - active principal
    total_transfers_out: int
    active_loans_count: int
    active_members_count: int
    members_count: int

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class PaymentRow:
    """One row of a member's payment history"""
    kind: RowKind
    date: str
    total_amount: int
    repayment_amount: int = 0
    contribution_amount: int = 0
    note: Optional[str] = None
    receipt_image_path: Optional[str] = None
    is_excess_contribution: bool = False
    payments: List[Payment] = field(default_factory=list)


@dataclass
class DepositOverviewRow:
    """Contribution totals of one member"""
    member: Member
    contributions_count: int
    contributions_total: int


def _single_row(payment: Payment) -> PaymentRow:
    is_repayment = payment.type == PaymentType.REPAYMENT
    return PaymentRow(
        kind=RowKind.SINGLE,
        date=payment.date,
        total_amount=payment.amount,
        repayment_amount=payment.amount if is_repayment else 0,
        contribution_amount=0 if is_repayment else payment.amount,
        note=payment.note,
        receipt_image_path=payment.receipt_image_path,
        payments=[payment]
    )


def group_payments_by_date(payments: List[Payment]) -> List[PaymentRow]:
    """
    Build display rows, newest date first.

    On a date holding both a repayment and a contribution the first of each
    become one combined row; every other payment is its own row.
    """
    by_date: Dict[str, List[Payment]] = {}
    for payment in sorted(payments, key=lambda p: p.created_at):
        by_date.setdefault(payment.date, []).append(payment)

    rows = []
    for date in sorted(by_date, reverse=True):
        same_date = by_date[date]
        repayment = next((p for p in same_date if p.type == PaymentType.REPAYMENT), None)
        contribution = next((p for p in same_date if p.type == PaymentType.CONTRIBUTION), None)

        if repayment and contribution:
            rows.append(PaymentRow(
                kind=RowKind.COMBINED,
                date=date,
                total_amount=repayment.amount + contribution.amount,
                repayment_amount=repayment.amount,
                contribution_amount=contribution.amount,
                note=repayment.note or contribution.note,
                receipt_image_path=repayment.receipt_image_path or contribution.receipt_image_path,
                is_excess_contribution=contribution.is_surplus_to_deposit,
                payments=[repayment, contribution]
            ))
            rest = [p for p in same_date if p is not repayment and p is not contribution]
        else:
            rest = same_date

        rows.extend(_single_row(p) for p in reversed(rest))
    return rows


class ReportingEngine:
    """
    Read-only fund reports
    """

    def __init__(self, storage: StorageInterface, member_manager: MemberManager,
                 loan_manager: LoanManager):
        self.storage = storage
        self.member_manager = member_manager
        self.loan_manager = loan_manager

    def _payments(self, filters: Optional[Dict[str, Any]] = None) -> List[Payment]:
        if filters:
            records = self.storage.find("payments", filters)
        else:
            records = self.storage.load_all("payments")
        return [Payment.from_dict(d) for d in records]

    def fund_summary(self) -> FundSummary:
        """Dashboard totals over all members, payments, loans and the fund log"""
        members = self.member_manager.list_members()
        payments = self._payments()
        active_loans = [loan for loan in self.loan_manager.list_loans() if loan.is_active]
        fund_log = [FundLogEntry.from_dict(d) for d in self.storage.load_all("fund_log")]

        deposits = total_deposits(members)
        loan_balance = total_loan_balance(members)
        contributions = sum(p.amount for p in payments if p.type == PaymentType.CONTRIBUTION)
        repayments = sum(p.amount for p in payments if p.type == PaymentType.REPAYMENT)
        active_principal = sum(loan.amount for loan in active_loans)

        return FundSummary(
            total_deposits=deposits,
            total_loan_balance=loan_balance,
            fund_online=deposits - loan_balance,
            lending_ceiling=lending_ceiling(members),
            total_contributions=contributions,
            total_repayments=repayments,
            active_loans_principal=active_principal,
            cash_balance=contributions + repayments - active_principal,
            total_transfers_out=sum(e.amount for e in fund_log if e.type == FundLogType.OUT),
            active_loans_count=len(active_loans),
            active_members_count=sum(1 for m in members if m.is_active),
            members_count=len(members)
        )

    def member_payment_rows(self, member_id: str) -> List[PaymentRow]:
        """A member's payment history grouped for display"""
        self.member_manager.require_member(member_id)
        return group_payments_by_date(self._payments({"member_id": member_id}))

    def deposits_overview(self) -> List[DepositOverviewRow]:
        """Contribution count and total per member, largest total first"""
        contributions = self._payments({"type": PaymentType.CONTRIBUTION.value})
        rows = []
        for member in self.member_manager.list_members():
            own = [p for p in contributions if p.member_id == member.id]
            rows.append(DepositOverviewRow(
                member=member,
                contributions_count=len(own),
                contributions_total=sum(p.amount for p in own)
            ))
        return sorted(rows, key=lambda r: r.contributions_total, reverse=True)
