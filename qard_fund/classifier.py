"""
Payment Classifier Module

Decides, before anything is written, whether a requested payment is valid for
the member's loan state and how it splits between loan repayment and deposit.

Two split rules exist and they are deliberately different:

* a ``repayment`` larger than the installment puts as much as the remaining
  loan balance allows towards the loan and moves the surplus to deposit;
* a ``contribution_repayment`` always takes exactly one installment for the
  loan and moves everything above it to deposit.

Both need an explicit operator confirmation of the computed split.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .currency import format_currency
from .exceptions import BusinessRuleError, ValidationError


class PaymentIntent(Enum):
    """What the operator says the money is for"""
    CONTRIBUTION = "contribution"                       # Deposit only
    REPAYMENT = "repayment"                             # Loan installment
    CONTRIBUTION_REPAYMENT = "contribution_repayment"   # One installment plus deposit surplus


class Decision(Enum):
    """Classifier outcome"""
    ACCEPT = "accept"       # Post as-is
    CONFIRM = "confirm"     # Post the split after operator confirmation
    REJECT = "reject"       # Nothing is posted


class SplitRule(Enum):
    """Which rule produced the repayment/deposit split"""
    NONE = "none"
    SURPLUS_TO_DEPOSIT = "surplus_to_deposit"
    INSTALLMENT_PLUS_DEPOSIT = "installment_plus_deposit"


class RejectionReason(Enum):
    """Why a payment request was rejected"""
    INVALID_AMOUNT = "invalid_amount"
    UNSETTLED_LOAN = "unsettled_loan"
    USE_COMBINED_TYPE = "use_combined_type"
    NO_ACTIVE_LOAN = "no_active_loan"
    BELOW_INSTALLMENT = "below_installment"


@dataclass(frozen=True)
class Classification:
    """Result of classifying one payment request"""
    decision: Decision
    intent: PaymentIntent
    amount: int
    installment: int
    repayment_amount: int = 0
    contribution_amount: int = 0
    rule: SplitRule = SplitRule.NONE
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    warning: Optional[str] = None

    @property
    def is_rejected(self) -> bool:
        return self.decision == Decision.REJECT

    @property
    def requires_confirmation(self) -> bool:
        return self.decision == Decision.CONFIRM

    @property
    def is_split(self) -> bool:
        """True when both a repayment and a deposit leg will be posted"""
        return self.repayment_amount > 0 and self.contribution_amount > 0

    def raise_for_rejection(self) -> None:
        """Raise the matching error if this classification is a rejection"""
        if not self.is_rejected:
            return
        if self.reason == RejectionReason.INVALID_AMOUNT:
            raise ValidationError(self.message, self.reason.value)
        raise BusinessRuleError(self.message, self.reason.value)


def _reject(intent: PaymentIntent, amount: int, installment: int,
            reason: RejectionReason, message: str) -> Classification:
    return Classification(
        decision=Decision.REJECT,
        intent=intent,
        amount=amount,
        installment=installment,
        reason=reason,
        message=message
    )


def classify_payment(
    intent: PaymentIntent,
    amount: int,
    has_active_loan: bool,
    installment: int = 0,
    loan_balance: int = 0
) -> Classification:
    """
    Classify a payment request.

    Args:
        intent: Requested payment intent
        amount: Requested amount in integer currency units
        has_active_loan: Whether the member has an active loan
        installment: The active loan's fixed monthly installment (0 without a loan)
        loan_balance: The member's current remaining loan balance

    Returns:
        Classification with the decision and the repayment/deposit split.
        The function is pure: equal inputs give equal results.
    """
    if not has_active_loan:
        installment = 0

    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return _reject(intent, amount, installment, RejectionReason.INVALID_AMOUNT,
                       "Amount must be a positive whole number")

    if intent == PaymentIntent.CONTRIBUTION:
        if has_active_loan:
            if amount > installment > 0:
                return _reject(intent, amount, installment, RejectionReason.USE_COMBINED_TYPE,
                               "Member has an unsettled loan; use the combined "
                               "deposit / monthly installment type")
            return _reject(intent, amount, installment, RejectionReason.UNSETTLED_LOAN,
                           "Member has an unsettled loan; change the payment type")
        return Classification(
            decision=Decision.ACCEPT,
            intent=intent,
            amount=amount,
            installment=installment,
            contribution_amount=amount
        )

    if intent == PaymentIntent.REPAYMENT:
        if not has_active_loan:
            return _reject(intent, amount, installment, RejectionReason.NO_ACTIVE_LOAN,
                           "Member has no active loan; a repayment cannot be recorded")

        if amount > installment > 0:
            repayment = min(amount, max(0, loan_balance))
            return Classification(
                decision=Decision.CONFIRM,
                intent=intent,
                amount=amount,
                installment=installment,
                repayment_amount=repayment,
                contribution_amount=amount - repayment,
                rule=SplitRule.SURPLUS_TO_DEPOSIT
            )

        warning = None
        if amount < installment:
            warning = (f"Monthly installment is {format_currency(installment, persian=False)} "
                       f"but {format_currency(amount, persian=False)} will be recorded")
        return Classification(
            decision=Decision.ACCEPT,
            intent=intent,
            amount=amount,
            installment=installment,
            repayment_amount=amount,
            warning=warning
        )

    if intent == PaymentIntent.CONTRIBUTION_REPAYMENT:
        if not has_active_loan:
            return _reject(intent, amount, installment, RejectionReason.NO_ACTIVE_LOAN,
                           "Member has no active loan")
        if amount < installment:
            return _reject(intent, amount, installment, RejectionReason.BELOW_INSTALLMENT,
                           "Amount is below the monthly installment; cannot combine "
                           "deposit and installment")
        return Classification(
            decision=Decision.CONFIRM,
            intent=intent,
            amount=amount,
            installment=installment,
            repayment_amount=installment,
            contribution_amount=amount - installment,
            rule=SplitRule.INSTALLMENT_PLUS_DEPOSIT
        )

    raise ValueError(f"Unsupported payment intent: {intent}")
