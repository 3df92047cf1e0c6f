"""
Tests for payment processing: classify, confirm, post
"""

import pytest

from qard_fund.classifier import Decision, PaymentIntent, SplitRule
from qard_fund.exceptions import BusinessRuleError, StaleStateError, ValidationError
from qard_fund.ledger import LedgerWriter, PaymentType, WithdrawalMode
from qard_fund.loans import LoanManager
from qard_fund.members import MemberManager
from qard_fund.payments import OutcomeStatus, PaymentProcessor
from qard_fund.storage import InMemoryStorage


class TestPaymentProcessor:
    """Test the payment workflow"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.members = MemberManager(self.storage)
        writer = LedgerWriter(self.storage)
        self.loans = LoanManager(self.storage, self.members, writer, enforce_ceiling=False)
        self.processor = PaymentProcessor(self.storage, self.members, self.loans, writer)

        self.saver = self.members.create_member("Saver", "0912")
        self.borrower = self.members.create_member("Borrower", "0935")
        # Installment 1,000,000
        self.loan = self.loans.disburse_loan(self.borrower.id, 12_000_000, "1400-01-15", 12)
        member = self.members.require_member(self.borrower.id)
        # Bring the balance down to 1,200,000
        self.members.save_member(member.with_balances(loan_balance=1_200_000))

    def test_contribution_without_loan_posts(self):
        outcome = self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION,
                                        500_000, "1400-02-01")
        assert outcome.status == OutcomeStatus.POSTED
        assert outcome.member.deposit == 500_000
        assert len(outcome.payments) == 1

    def test_intent_accepts_plain_string(self):
        outcome = self.processor.submit(self.saver.id, "contribution", 100, "1400-02-01")
        assert outcome.is_posted

    def test_preview_does_not_write(self):
        classification = self.processor.preview(self.borrower.id, PaymentIntent.REPAYMENT,
                                                1_500_000)
        assert classification.decision == Decision.CONFIRM
        assert classification.repayment_amount == 1_200_000
        assert self.storage.load_all("payments") == []

    def test_split_requires_confirmation(self):
        outcome = self.processor.submit(self.borrower.id, PaymentIntent.REPAYMENT,
                                        1_500_000, "1400-02-15")
        assert outcome.status == OutcomeStatus.CONFIRMATION_REQUIRED
        assert outcome.classification.rule == SplitRule.SURPLUS_TO_DEPOSIT
        assert self.storage.load_all("payments") == []
        assert self.members.require_member(self.borrower.id).loan_balance == 1_200_000

    def test_confirmed_split_scenario_a(self):
        outcome = self.processor.submit(self.borrower.id, PaymentIntent.REPAYMENT,
                                        1_500_000, "1400-02-15", confirmed=True)
        assert outcome.is_posted
        member = self.members.require_member(self.borrower.id)
        assert member.loan_balance == 0
        assert member.deposit == 300_000

    def test_confirmed_combined_scenario_b(self):
        self.processor.submit(self.borrower.id, PaymentIntent.CONTRIBUTION_REPAYMENT,
                              1_500_000, "1400-02-15", confirmed=True)
        member = self.members.require_member(self.borrower.id)
        assert member.loan_balance == 200_000
        assert member.deposit == 500_000

    def test_rejection_scenario_c(self):
        before = self.members.require_member(self.saver.id)
        with pytest.raises(BusinessRuleError):
            self.processor.submit(self.saver.id, PaymentIntent.REPAYMENT, 500_000, "1400-02-01")
        after = self.members.require_member(self.saver.id)
        assert after == before
        assert self.storage.load_all("payments") == []

    def test_contribution_with_loan_rejected(self):
        with pytest.raises(BusinessRuleError):
            self.processor.submit(self.borrower.id, PaymentIntent.CONTRIBUTION,
                                  500_000, "1400-02-01")

    def test_invalid_amount(self):
        with pytest.raises(ValidationError):
            self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 0, "1400-02-01")

    def test_small_repayment_posts_with_warning(self):
        outcome = self.processor.submit(self.borrower.id, PaymentIntent.REPAYMENT,
                                        400_000, "1400-02-15")
        assert outcome.is_posted
        assert outcome.classification.warning is not None
        assert outcome.member.loan_balance == 800_000

    def test_withdraw_deduct_loan(self):
        self.processor.submit(self.borrower.id, PaymentIntent.CONTRIBUTION_REPAYMENT,
                              1_500_000, "1400-02-15", confirmed=True)
        result = self.processor.withdraw(self.borrower.id, 200_000, WithdrawalMode.DEDUCT_LOAN,
                                         date="1400-03-01")
        assert result.member.deposit == 300_000
        assert result.member.loan_balance == 0

    def test_withdraw_transfer_defaults_date(self):
        self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 500_000, "1400-02-01")
        result = self.processor.withdraw(self.saver.id, 100_000, "transfer",
                                         card_number="6037990000000000")
        assert result.member.deposit == 400_000
        assert result.fund_log[0].date

    def test_member_payments_newest_first(self):
        self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 100, "1400-02-01")
        self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 200, "1400-04-01")
        self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 300, "1400-03-01")

        payments = self.processor.get_member_payments(self.saver.id)
        assert [p.date for p in payments] == ["1400-04-01", "1400-03-01", "1400-02-01"]

    def test_member_payments_by_type(self):
        self.processor.submit(self.borrower.id, PaymentIntent.CONTRIBUTION_REPAYMENT,
                              1_500_000, "1400-02-15", confirmed=True)
        repayments = self.processor.get_member_payments(self.borrower.id, PaymentType.REPAYMENT)
        assert [p.amount for p in repayments] == [1_000_000]
        assert len(self.processor.list_payments()) == 2

    def test_stale_member_rejected(self):
        original_require = self.members.require_member
        snapshot = original_require(self.saver.id)

        # Another operator posts between our read and our write
        self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION, 100, "1400-02-01")
        self.members.require_member = lambda member_id: snapshot
        try:
            with pytest.raises(StaleStateError):
                self.processor.submit(self.saver.id, PaymentIntent.CONTRIBUTION,
                                      200, "1400-02-02")
        finally:
            self.members.require_member = original_require

        assert self.members.require_member(self.saver.id).deposit == 100
