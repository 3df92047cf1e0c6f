"""
Balance Ledger Module

Applies classified payments and withdrawals to a member snapshot. The posting
functions are pure: they take a member, return the updated member plus the
payment and fund-log records to write, and never touch storage.
``LedgerWriter`` commits such a result as one unit.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple
import uuid

from .classifier import Classification, Decision, SplitRule
from .currency import format_currency, require_positive_amount
from .dates import require_date
from .exceptions import (
    BusinessRuleError, InconsistentStateError, StaleStateError, ValidationError
)
from .logging_config import get_logger, log_action
from .members import Member
from .storage import StorageInterface, StorageRecord, utc_now

logger = get_logger("qard.ledger")


# Provenance notes written on payment records
INSTALLMENT_NOTE = "قسط ماهانه"
INSTALLMENT_PREFIX = "قسط"
DEPOSIT_NOTE = "سپرده"
REPAYMENT_NOTE = "بازپرداخت"
REPAYMENT_WITH_SURPLUS_NOTE = "بازپرداخت وام (مازاد به سپرده)"
SURPLUS_TO_DEPOSIT_NOTE = "مازاد وام به سپرده"
DEPOSIT_DEDUCTION_MARKER = "برداشت از سپرده"
DEPOSIT_DEDUCTION_NOTE = "برداشت از سپرده — کسر از وام"

WITHDRAWAL_TRANSFER_REF = "withdrawal_transfer"


class PaymentType(Enum):
    """Posted payment record types"""
    CONTRIBUTION = "contribution"   # Increases deposit
    REPAYMENT = "repayment"         # Decreases loan balance


class WithdrawalMode(Enum):
    """Ways a member can take money out of their deposit"""
    DEDUCT_LOAN = "deduct_loan"     # Offset against the loan balance
    TRANSFER = "transfer"           # Paid out to the member's bank card


class FundLogType(Enum):
    """Direction of a fund-log entry"""
    IN = "in"
    OUT = "out"


@dataclass
class Payment(StorageRecord):
    """Immutable posted payment"""
    member_id: str
    amount: int
    date: str
    type: PaymentType
    note: Optional[str] = None
    receipt_image_path: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = PaymentType(self.type)
        if self.amount <= 0:
            raise ValueError("Payment amount must be positive")

    @property
    def is_surplus_to_deposit(self) -> bool:
        """Deposit that came from an over-sized loan repayment"""
        return (self.type == PaymentType.CONTRIBUTION
                and SURPLUS_TO_DEPOSIT_NOTE in (self.note or ""))

    @property
    def is_deposit_deduction(self) -> bool:
        """Repayment that was taken out of the member's deposit"""
        return (self.type == PaymentType.REPAYMENT
                and DEPOSIT_DEDUCTION_MARKER in (self.note or ""))


@dataclass
class FundLogEntry(StorageRecord):
    """Cash movement of the fund that is not a member payment"""
    type: FundLogType
    amount: int
    ref_type: str
    date: str
    member_id: Optional[str] = None
    ref_id: Optional[str] = None
    note: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = FundLogType(self.type)


@dataclass
class LedgerResult:
    """
    Everything one logical posting produces: the single updated member
    snapshot and the records that must be committed with it.
    """
    member: Member
    payments: List[Payment] = field(default_factory=list)
    fund_log: List[FundLogEntry] = field(default_factory=list)

    @property
    def repayment_total(self) -> int:
        return sum(p.amount for p in self.payments if p.type == PaymentType.REPAYMENT)

    @property
    def contribution_total(self) -> int:
        return sum(p.amount for p in self.payments if p.type == PaymentType.CONTRIBUTION)


def _new_payment(member_id: str, amount: int, date: str, payment_type: PaymentType,
                 note: Optional[str], receipt_image_path: Optional[str]) -> Payment:
    now = utc_now()
    return Payment(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        member_id=member_id,
        amount=amount,
        date=date,
        type=payment_type,
        note=note,
        receipt_image_path=receipt_image_path
    )


def _tag(prefix: str, note: Optional[str], default: str) -> str:
    return f"{prefix} — {note}" if note else default


def post_contribution(member: Member, amount: int, date: str, note: Optional[str] = None,
                      receipt_image_path: Optional[str] = None) -> LedgerResult:
    """Deposit contribution: ``deposit += amount`` and one contribution record"""
    amount = require_positive_amount(amount)
    date = require_date(date)

    updated = member.with_balances(deposit=member.deposit + amount)
    payment = _new_payment(member.id, amount, date, PaymentType.CONTRIBUTION,
                           note, receipt_image_path)
    return LedgerResult(member=updated, payments=[payment])


def post_repayment(member: Member, amount: int, date: str, note: Optional[str] = None,
                   receipt_image_path: Optional[str] = None) -> LedgerResult:
    """
    Loan repayment: ``loan_balance = max(0, loan_balance - amount)`` and one
    repayment record. Anything beyond the balance is absorbed by the clamp.
    """
    amount = require_positive_amount(amount)
    date = require_date(date)

    updated = member.with_balances(loan_balance=max(0, member.loan_balance - amount))
    payment = _new_payment(member.id, amount, date, PaymentType.REPAYMENT,
                           note, receipt_image_path)
    return LedgerResult(member=updated, payments=[payment])


def post_split(
    member: Member,
    repayment_amount: int,
    contribution_amount: int,
    date: str,
    repayment_note: Optional[str] = None,
    contribution_note: Optional[str] = None,
    receipt_image_path: Optional[str] = None
) -> LedgerResult:
    """
    Apply a repayment leg and a deposit leg sharing one date.

    A leg of zero is not recorded, so the result holds one or two payments.
    """
    if repayment_amount < 0 or contribution_amount < 0:
        raise ValidationError("Split amounts must not be negative", "invalid_amount")
    if repayment_amount + contribution_amount <= 0:
        raise ValidationError("amount must be greater than zero", "invalid_amount")
    date = require_date(date)

    updated = member.with_balances(
        deposit=member.deposit + contribution_amount,
        loan_balance=max(0, member.loan_balance - repayment_amount)
    )
    payments = []
    if repayment_amount > 0:
        payments.append(_new_payment(member.id, repayment_amount, date, PaymentType.REPAYMENT,
                                     repayment_note, receipt_image_path))
    if contribution_amount > 0:
        payments.append(_new_payment(member.id, contribution_amount, date,
                                     PaymentType.CONTRIBUTION, contribution_note,
                                     receipt_image_path))
    return LedgerResult(member=updated, payments=payments)


def post_classified(member: Member, classification: Classification, date: str,
                    note: Optional[str] = None,
                    receipt_image_path: Optional[str] = None) -> LedgerResult:
    """
    Turn a classifier decision into ledger postings, tagging each record with
    where its money came from.
    """
    if classification.decision == Decision.REJECT:
        classification.raise_for_rejection()

    repayment = classification.repayment_amount
    contribution = classification.contribution_amount

    if classification.rule == SplitRule.SURPLUS_TO_DEPOSIT:
        default_repayment_note = REPAYMENT_WITH_SURPLUS_NOTE if contribution > 0 else REPAYMENT_NOTE
        return post_split(
            member, repayment, contribution, date,
            repayment_note=_tag(REPAYMENT_NOTE, note, default_repayment_note),
            contribution_note=_tag(SURPLUS_TO_DEPOSIT_NOTE, note, SURPLUS_TO_DEPOSIT_NOTE),
            receipt_image_path=receipt_image_path
        )

    if classification.rule == SplitRule.INSTALLMENT_PLUS_DEPOSIT:
        return post_split(
            member, repayment, contribution, date,
            repayment_note=_tag(INSTALLMENT_PREFIX, note, INSTALLMENT_NOTE),
            contribution_note=_tag(DEPOSIT_NOTE, note, DEPOSIT_NOTE),
            receipt_image_path=receipt_image_path
        )

    if contribution > 0:
        return post_contribution(member, contribution, date, note, receipt_image_path)
    return post_repayment(member, repayment, date, note, receipt_image_path)


def post_withdrawal(
    member: Member,
    amount: int,
    mode: WithdrawalMode,
    date: str,
    card_number: Optional[str] = None
) -> LedgerResult:
    """
    Take money out of a member's deposit.

    ``deduct_loan`` lowers deposit and loan balance together and records a
    repayment; the amount may not exceed either balance. ``transfer`` lowers
    the deposit only and records a fund outflow to the given card.
    """
    if member.deposit <= 0:
        raise BusinessRuleError("Member has no deposit to withdraw", "no_deposit")
    amount = require_positive_amount(amount)
    date = require_date(date)

    if amount > member.deposit:
        raise ValidationError(
            f"Amount cannot exceed deposit balance of {format_currency(member.deposit, persian=False)}",
            "exceeds_deposit"
        )

    if mode == WithdrawalMode.DEDUCT_LOAN:
        if amount > member.loan_balance:
            raise ValidationError(
                f"Amount cannot exceed loan balance of "
                f"{format_currency(member.loan_balance, persian=False)}",
                "exceeds_loan_balance"
            )
        updated = member.with_balances(
            deposit=member.deposit - amount,
            loan_balance=member.loan_balance - amount
        )
        payment = _new_payment(member.id, amount, date, PaymentType.REPAYMENT,
                               DEPOSIT_DEDUCTION_NOTE, None)
        return LedgerResult(member=updated, payments=[payment])

    if mode == WithdrawalMode.TRANSFER:
        if not card_number or not card_number.strip():
            raise ValidationError("Destination card number is required", "missing_field")
        card_number = card_number.strip()
        updated = member.with_balances(deposit=member.deposit - amount)
        now = utc_now()
        entry = FundLogEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            type=FundLogType.OUT,
            amount=amount,
            ref_type=WITHDRAWAL_TRANSFER_REF,
            date=date,
            member_id=member.id,
            note=f"واریز به حساب - کارت: {card_number} - مبلغ: {amount}"
        )
        return LedgerResult(member=updated, fund_log=[entry])

    raise ValueError(f"Unsupported withdrawal mode: {mode}")


Step = Tuple[str, Callable[[], Any]]


class LedgerWriter:
    """
    Commits a LedgerResult: the member snapshot first (conditional on the
    version it was read at), then the payment records, then fund-log entries.

    On a store without transactions a failure after the first write leaves
    the ledger half-applied; that is reported as InconsistentStateError and
    never retried silently.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.members_table = "members"
        self.payments_table = "payments"
        self.fund_log_table = "fund_log"

    def commit(self, result: LedgerResult, extra_steps: Sequence[Step] = ()) -> LedgerResult:
        """
        Write a posting result as one logical unit

        Args:
            result: Output of one of the posting functions
            extra_steps: (name, callable) pairs run after the ledger writes,
                e.g. marking a receipt approved

        Returns:
            LedgerResult with the records as stored (new member version,
            store-assigned ids and timestamps)
        """
        completed: List[str] = []
        stored_member: Optional[Member] = None
        stored_payments: List[Payment] = []
        stored_entries: List[FundLogEntry] = []
        step = "member"

        try:
            with self.storage.atomic():
                data = self.storage.update(
                    self.members_table, result.member.id, result.member.to_dict(),
                    expected_version=result.member.version
                )
                stored_member = Member.from_dict(data)
                completed.append(step)

                for payment in result.payments:
                    step = f"payment:{payment.type.value}:{payment.amount}"
                    data = self.storage.create(
                        self.payments_table, payment.to_dict(), idempotency_key=payment.id
                    )
                    stored_payments.append(Payment.from_dict(data))
                    completed.append(step)

                for entry in result.fund_log:
                    step = f"fund_log:{entry.type.value}:{entry.amount}"
                    data = self.storage.create(
                        self.fund_log_table, entry.to_dict(), idempotency_key=entry.id
                    )
                    stored_entries.append(FundLogEntry.from_dict(data))
                    completed.append(step)

                for name, run in extra_steps:
                    step = name
                    run()
                    completed.append(step)

        except StaleStateError:
            if completed and not self.storage.supports_transactions:
                raise self._inconsistent(result, completed, step)
            log_action(logger, "warning", "Ledger write rejected: stale member snapshot",
                       member_id=result.member.id, action="ledger_stale", resource="member")
            raise
        except Exception as e:
            if completed and not self.storage.supports_transactions:
                raise self._inconsistent(result, completed, step) from e
            log_action(logger, "error", f"Ledger write failed at {step}: {e}",
                       member_id=result.member.id, action="ledger_write_failed",
                       resource="member")
            raise

        log_action(
            logger, "info", "Ledger posting committed",
            member_id=stored_member.id, action="ledger_committed", resource="member",
            extra={
                "deposit": stored_member.deposit,
                "loan_balance": stored_member.loan_balance,
                "payments": [(p.type.value, p.amount) for p in stored_payments],
                "fund_log": [(e.type.value, e.amount) for e in stored_entries],
            }
        )
        return LedgerResult(member=stored_member, payments=stored_payments,
                            fund_log=stored_entries)

    def _inconsistent(self, result: LedgerResult, completed: List[str],
                      failed_step: str) -> InconsistentStateError:
        message = (f"Ledger left partially applied for member {result.member.id}: "
                   f"wrote {', '.join(completed)} but {failed_step} failed; "
                   f"manual reconciliation required")
        log_action(logger, "critical", message, member_id=result.member.id,
                   action="ledger_inconsistent", resource="member",
                   extra={"completed": completed, "failed": failed_step})
        return InconsistentStateError(message, completed, failed_step)
