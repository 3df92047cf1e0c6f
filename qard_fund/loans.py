"""
Loan Module

Handles interest-free loan disbursement, the one-active-loan rule, the pooled
lending ceiling, settlement and the per-loan repayment statement.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .currency import format_currency, require_positive_amount
from .dates import require_date
from .exceptions import BusinessRuleError, NotFoundError, ValidationError
from .installments import (
    InstallmentRow, build_installment_schedule, compute_installment,
    first_due_date, last_due_date
)
from .ledger import LedgerResult, LedgerWriter, Payment, PaymentType
from .logging_config import get_logger, log_action
from .members import Member, MemberManager, total_deposits, total_loan_balance
from .storage import StorageInterface, StorageRecord, utc_now

logger = get_logger("qard.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"       # Disbursed, still being repaid
    SETTLED = "settled"     # Closed by an operator


@dataclass
class Loan(StorageRecord):
    """
    Interest-free loan.

    ``status`` may be None on legacy records; such loans count as active.
    """
    member_id: str
    amount: int
    date: str
    due_months: int = 1
    status: Optional[LoanStatus] = LoanStatus.ACTIVE
    note: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = LoanStatus(self.status)
        if self.due_months is None or self.due_months < 1:
            self.due_months = 1

    @property
    def is_active(self) -> bool:
        return is_active_status(self.status)

    @property
    def installment(self) -> int:
        """Fixed monthly installment"""
        return compute_installment(self.amount, self.due_months)


@dataclass
class LoanStatement:
    """Repayment picture of one loan"""
    loan: Loan
    member: Member
    installment: int
    first_due_date: str
    last_due_date: Optional[str]
    total_repaid: int
    remaining: int
    schedule: List[InstallmentRow] = field(default_factory=list)
    has_deposit_deduction: bool = False

    @property
    def paid_months(self) -> int:
        return sum(1 for row in self.schedule if row.is_paid)


def is_active_status(status: Optional[LoanStatus]) -> bool:
    """A loan is active unless it is explicitly settled"""
    return status is None or status == LoanStatus.ACTIVE


def has_active_loan(loans: List[Loan]) -> bool:
    return any(loan.is_active for loan in loans)


def can_disburse(member: Member, existing_loans: List[Loan]) -> bool:
    """A member may borrow only while none of their loans is active"""
    return not has_active_loan([loan for loan in existing_loans if loan.member_id == member.id])


def lending_ceiling(members: List[Member]) -> int:
    """Money the fund can lend right now: deposits minus outstanding balances"""
    return max(0, total_deposits(members) - total_loan_balance(members))


def disburse(member: Member, existing_loans: List[Loan], amount: int, date: str,
             due_months: int, note: Optional[str] = None,
             ceiling: Optional[int] = None) -> Tuple[Loan, Member]:
    """
    Build a new loan and the member snapshot it produces.

    Args:
        member: Borrower
        existing_loans: All loans of the borrower
        amount: Principal
        date: Disbursement date
        due_months: Term; values below 1 become 1
        note: Free text
        ceiling: Lending ceiling to enforce, or None to skip the check

    Returns:
        (loan, updated member) with ``loan_balance`` and ``loan_amount``
        both raised by the principal
    """
    amount = require_positive_amount(amount)
    date = require_date(date)

    if ceiling is not None and amount > ceiling:
        raise ValidationError(
            f"Loan amount exceeds the fund's lending ceiling of "
            f"{format_currency(ceiling, persian=False)}",
            "exceeds_ceiling"
        )
    if not can_disburse(member, existing_loans):
        raise BusinessRuleError("Member already has an active loan", "active_loan_exists")

    now = utc_now()
    loan = Loan(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        member_id=member.id,
        amount=amount,
        date=date,
        due_months=max(1, due_months or 1),
        status=LoanStatus.ACTIVE,
        note=note
    )
    updated = member.with_balances(
        loan_balance=member.loan_balance + amount,
        loan_amount=member.loan_amount + amount
    )
    return loan, updated


def settle(loan: Loan) -> Loan:
    """Mark a loan settled. Member balances are left as they are."""
    if loan.status == LoanStatus.SETTLED:
        return loan
    return replace(loan, status=LoanStatus.SETTLED, updated_at=utc_now())


class LoanManager:
    """
    Manages loan records and their effect on member balances
    """

    def __init__(
        self,
        storage: StorageInterface,
        member_manager: MemberManager,
        ledger_writer: Optional[LedgerWriter] = None,
        enforce_ceiling: bool = True,
        default_due_months: int = 12
    ):
        self.storage = storage
        self.member_manager = member_manager
        self.ledger_writer = ledger_writer or LedgerWriter(storage)
        self.enforce_ceiling = enforce_ceiling
        self.default_due_months = default_due_months
        self.table_name = "loans"
        self.payments_table = "payments"

    def disburse_loan(
        self,
        member_id: str,
        amount: int,
        date: str,
        due_months: Optional[int] = None,
        note: Optional[str] = None
    ) -> Loan:
        """
        Disburse a loan to a member

        The member snapshot is written first (conditional on its version),
        then the loan record.

        Raises:
            ValidationError: invalid amount or date, or above the lending ceiling
            BusinessRuleError: member already has an active loan
            NotFoundError: member does not exist
        """
        if not member_id:
            raise ValidationError("Member is required", "missing_field")
        member = self.member_manager.require_member(member_id)

        ceiling = None
        if self.enforce_ceiling:
            ceiling = lending_ceiling(self.member_manager.list_members())

        if due_months is None:
            due_months = self.default_due_months

        loan, updated = disburse(
            member, self.get_member_loans(member_id), amount, date, due_months,
            note=note, ceiling=ceiling
        )

        stored = []

        def create_loan():
            stored.append(self.storage.create(
                self.table_name, loan.to_dict(), idempotency_key=loan.id
            ))

        self.ledger_writer.commit(LedgerResult(member=updated),
                                  extra_steps=[("loan", create_loan)])
        loan = Loan.from_dict(stored[0])

        log_action(logger, "info",
                   f"Loan disbursed: {loan.amount} over {loan.due_months} months",
                   member_id=member_id, action="loan_disbursed", resource="loan",
                   extra={"loan_id": loan.id, "installment": loan.installment})
        return loan

    def settle_loan(self, loan_id: str) -> Loan:
        """Mark a loan settled; settling a settled loan changes nothing"""
        loan = self.require_loan(loan_id)
        settled = settle(loan)
        if settled is loan:
            return loan

        data = self.storage.update(self.table_name, loan.id,
                                   {"status": LoanStatus.SETTLED.value})
        loan = Loan.from_dict(data)

        log_action(logger, "info", "Loan settled", member_id=loan.member_id,
                   action="loan_settled", resource="loan", extra={"loan_id": loan.id})
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.table_name, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found", "loan_not_found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """List loans, newest first. Filtering by ACTIVE includes legacy loans."""
        loans = [Loan.from_dict(d) for d in self.storage.load_all(self.table_name)]
        if status == LoanStatus.ACTIVE:
            loans = [loan for loan in loans if loan.is_active]
        elif status is not None:
            loans = [loan for loan in loans if loan.status == status]
        return sorted(loans, key=lambda loan: (loan.date, loan.created_at), reverse=True)

    def get_member_loans(self, member_id: str) -> List[Loan]:
        """All loans of a member"""
        return [Loan.from_dict(d)
                for d in self.storage.find(self.table_name, {"member_id": member_id})]

    def get_active_loan(self, member_id: str) -> Optional[Loan]:
        """The member's active loan, if any"""
        active = [loan for loan in self.get_member_loans(member_id) if loan.is_active]
        if not active:
            return None
        return max(active, key=lambda loan: loan.created_at)

    def loan_statement(self, loan_id: str) -> LoanStatement:
        """
        Build the repayment statement of a loan

        Paid months follow the watermark rule over the member's repayments
        recorded since the loan was created. The remaining amount is the
        member's loan balance.
        """
        loan = self.require_loan(loan_id)
        member = self.member_manager.require_member(loan.member_id)

        repayments = [
            Payment.from_dict(d) for d in self.storage.find(
                self.payments_table,
                {"member_id": loan.member_id, "type": PaymentType.REPAYMENT.value}
            )
        ]
        repayments = [p for p in repayments if p.created_at >= loan.created_at]
        total_repaid = sum(p.amount for p in repayments)
        installment = loan.installment

        return LoanStatement(
            loan=loan,
            member=member,
            installment=installment,
            first_due_date=first_due_date(loan.date),
            last_due_date=last_due_date(loan.date, loan.due_months),
            total_repaid=total_repaid,
            remaining=member.loan_balance,
            schedule=build_installment_schedule(loan.date, loan.due_months,
                                                installment, total_repaid),
            has_deposit_deduction=any(p.is_deposit_deduction for p in repayments)
        )


def loan_to_summary(loan: Loan) -> Dict[str, Any]:
    data = loan.to_dict()
    data["installment"] = loan.installment
    data["status"] = (loan.status or LoanStatus.ACTIVE).value
    return data
