"""
Payment Processing Module

Runs a payment request through the classifier and the ledger: load the
member and their active loan, classify, ask for confirmation where the split
needs it, then post and commit.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union
from enum import Enum

from .classifier import Classification, PaymentIntent, classify_payment
from .dates import today_str
from .ledger import (
    LedgerResult, LedgerWriter, Payment, PaymentType, Step, WithdrawalMode,
    post_classified, post_withdrawal
)
from .loans import Loan, LoanManager
from .logging_config import get_logger, log_action
from .members import Member, MemberManager
from .storage import StorageInterface

logger = get_logger("qard.payments")


class OutcomeStatus(Enum):
    """Result of a submitted payment"""
    POSTED = "posted"
    CONFIRMATION_REQUIRED = "confirmation_required"


@dataclass
class PaymentOutcome:
    """What happened to a submitted payment"""
    status: OutcomeStatus
    classification: Classification
    member: Optional[Member] = None
    payments: List[Payment] = field(default_factory=list)

    @property
    def is_posted(self) -> bool:
        return self.status == OutcomeStatus.POSTED


class PaymentProcessor:
    """
    Classifies and posts member payments and withdrawals
    """

    def __init__(
        self,
        storage: StorageInterface,
        member_manager: MemberManager,
        loan_manager: LoanManager,
        ledger_writer: Optional[LedgerWriter] = None
    ):
        self.storage = storage
        self.member_manager = member_manager
        self.loan_manager = loan_manager
        self.ledger_writer = ledger_writer or LedgerWriter(storage)
        self.table_name = "payments"

    def _load_context(self, member_id: str) -> Tuple[Member, Optional[Loan]]:
        member = self.member_manager.require_member(member_id)
        return member, self.loan_manager.get_active_loan(member_id)

    def _classify(self, member: Member, loan: Optional[Loan],
                  intent: PaymentIntent, amount: int) -> Classification:
        classification = classify_payment(
            intent,
            amount,
            has_active_loan=loan is not None,
            installment=loan.installment if loan else 0,
            loan_balance=member.loan_balance
        )
        if classification.is_rejected:
            log_action(logger, "info", f"Payment rejected: {classification.message}",
                       member_id=member.id, action="payment_rejected", resource="payment",
                       extra={"intent": intent.value, "amount": amount,
                              "reason": classification.reason.value})
        return classification

    def preview(self, member_id: str, intent: Union[PaymentIntent, str],
                amount: int) -> Classification:
        """Classify a payment without writing anything"""
        intent = PaymentIntent(intent)
        member, loan = self._load_context(member_id)
        return self._classify(member, loan, intent, amount)

    def submit(
        self,
        member_id: str,
        intent: Union[PaymentIntent, str],
        amount: int,
        date: str,
        note: Optional[str] = None,
        confirmed: bool = False,
        receipt_image_path: Optional[str] = None,
        extra_steps: Sequence[Step] = ()
    ) -> PaymentOutcome:
        """
        Classify and post a payment

        Args:
            member_id: Paying member
            intent: contribution, repayment or contribution_repayment
            amount: Amount in integer currency units
            date: Payment date
            note: Free text appended to the provenance note
            confirmed: Operator accepted the split preview
            receipt_image_path: Attached receipt, copied to every record
            extra_steps: Additional writes committed after the ledger records

        Returns:
            PaymentOutcome; ``confirmation_required`` when the split still
            needs to be accepted, in which case nothing was written

        Raises:
            ValidationError, BusinessRuleError: the payment was rejected
        """
        intent = PaymentIntent(intent)
        member, loan = self._load_context(member_id)
        classification = self._classify(member, loan, intent, amount)
        classification.raise_for_rejection()

        if classification.requires_confirmation and not confirmed:
            return PaymentOutcome(status=OutcomeStatus.CONFIRMATION_REQUIRED,
                                  classification=classification)

        result = post_classified(member, classification, date, note, receipt_image_path)
        stored = self.ledger_writer.commit(result, extra_steps=extra_steps)

        log_action(logger, "info", f"Payment posted ({intent.value})",
                   member_id=member_id, action="payment_posted", resource="payment",
                   extra={"repayment": classification.repayment_amount,
                          "contribution": classification.contribution_amount,
                          "rule": classification.rule.value})
        return PaymentOutcome(
            status=OutcomeStatus.POSTED,
            classification=classification,
            member=stored.member,
            payments=stored.payments
        )

    def withdraw(
        self,
        member_id: str,
        amount: int,
        mode: Union[WithdrawalMode, str],
        date: Optional[str] = None,
        card_number: Optional[str] = None
    ) -> LedgerResult:
        """Withdraw from a member's deposit, either against the loan or to a card"""
        mode = WithdrawalMode(mode)
        member = self.member_manager.require_member(member_id)
        result = post_withdrawal(member, amount, mode, date or today_str(), card_number)
        stored = self.ledger_writer.commit(result)

        log_action(logger, "info", f"Withdrawal posted ({mode.value})",
                   member_id=member_id, action="withdrawal_posted", resource="payment",
                   extra={"amount": amount})
        return stored

    def list_payments(self, payment_type: Optional[PaymentType] = None) -> List[Payment]:
        """All payments, newest first"""
        if payment_type:
            records = self.storage.find(self.table_name, {"type": payment_type.value})
        else:
            records = self.storage.load_all(self.table_name)
        return _newest_first([Payment.from_dict(d) for d in records])

    def get_member_payments(self, member_id: str,
                            payment_type: Optional[PaymentType] = None) -> List[Payment]:
        """A member's payments, newest first"""
        filters = {"member_id": member_id}
        if payment_type:
            filters["type"] = payment_type.value
        records = self.storage.find(self.table_name, filters)
        return _newest_first([Payment.from_dict(d) for d in records])


def _newest_first(payments: List[Payment]) -> List[Payment]:
    return sorted(payments, key=lambda p: (p.date, p.created_at), reverse=True)
