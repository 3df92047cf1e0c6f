"""
Test suite for the balance ledger

Tests the pure posting functions, withdrawal rules, provenance notes and the
writer's commit order and partial-failure detection.
"""

import pytest

from qard_fund.classifier import PaymentIntent, classify_payment
from qard_fund.exceptions import (
    BusinessRuleError, InconsistentStateError, StaleStateError, StoreError, ValidationError
)
from qard_fund.ledger import (
    DEPOSIT_DEDUCTION_NOTE, INSTALLMENT_NOTE, REPAYMENT_WITH_SURPLUS_NOTE,
    SURPLUS_TO_DEPOSIT_NOTE, FundLogType, LedgerWriter, PaymentType, WithdrawalMode,
    post_classified, post_contribution, post_repayment, post_split, post_withdrawal
)
from qard_fund.members import Member
from qard_fund.storage import InMemoryStorage, utc_now


def make_member(deposit=0, loan_balance=0, member_id="member_1"):
    now = utc_now()
    return Member(
        id=member_id,
        created_at=now,
        updated_at=now,
        full_name="Ali Rezaei",
        phone="09120000000",
        deposit=deposit,
        loan_balance=loan_balance,
        loan_amount=loan_balance
    )


class TestPostings:
    """Test the pure posting functions"""

    def test_contribution_increases_deposit(self):
        member = make_member(deposit=100)
        result = post_contribution(member, 50, "1400-01-15", note="monthly")

        assert result.member.deposit == 150
        assert result.member.loan_balance == 0
        assert len(result.payments) == 1
        assert result.payments[0].type == PaymentType.CONTRIBUTION
        assert result.payments[0].note == "monthly"
        # Input snapshot untouched
        assert member.deposit == 100

    def test_repayment_decreases_loan_balance(self):
        result = post_repayment(make_member(loan_balance=300), 100, "1400-01-15")
        assert result.member.loan_balance == 200
        assert result.payments[0].type == PaymentType.REPAYMENT

    def test_repayment_clamps_at_zero(self):
        result = post_repayment(make_member(loan_balance=300), 500, "1400-01-15")
        assert result.member.loan_balance == 0
        assert result.payments[0].amount == 500

    def test_date_is_normalized(self):
        result = post_contribution(make_member(), 10, "1400/1/5")
        assert result.payments[0].date == "1400-01-05"

    def test_missing_date_rejected(self):
        with pytest.raises(ValidationError):
            post_contribution(make_member(), 10, "")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError):
            post_repayment(make_member(loan_balance=10), 0, "1400-01-15")


class TestSplit:
    """Test two-leg postings"""

    def test_split_records_sum_to_total(self):
        member = make_member(deposit=1000, loan_balance=2000)
        result = post_split(member, 700, 300, "1400-01-15")

        assert sum(p.amount for p in result.payments) == 1000
        assert result.member.loan_balance == member.loan_balance - 700
        assert result.member.deposit == member.deposit + 300
        assert {p.date for p in result.payments} == {"1400-01-15"}

    def test_zero_leg_omitted(self):
        result = post_split(make_member(loan_balance=2000), 1000, 0, "1400-01-15")
        assert len(result.payments) == 1
        assert result.payments[0].type == PaymentType.REPAYMENT

    def test_negative_leg_rejected(self):
        with pytest.raises(ValidationError):
            post_split(make_member(), -1, 10, "1400-01-15")

    def test_empty_split_rejected(self):
        with pytest.raises(ValidationError):
            post_split(make_member(), 0, 0, "1400-01-15")


class TestPostClassified:
    """Test classifier decisions turned into postings"""

    def test_scenario_a_surplus_to_deposit(self):
        member = make_member(deposit=0, loan_balance=1_200_000)
        classification = classify_payment(PaymentIntent.REPAYMENT, 1_500_000, True,
                                          installment=1_000_000, loan_balance=1_200_000)
        result = post_classified(member, classification, "1400-03-01")

        assert result.member.loan_balance == 0
        assert result.member.deposit == 300_000
        notes = {p.type: p.note for p in result.payments}
        assert notes[PaymentType.REPAYMENT] == REPAYMENT_WITH_SURPLUS_NOTE
        assert notes[PaymentType.CONTRIBUTION] == SURPLUS_TO_DEPOSIT_NOTE
        assert any(p.is_surplus_to_deposit for p in result.payments)

    def test_scenario_b_installment_plus_deposit(self):
        member = make_member(deposit=0, loan_balance=1_200_000)
        classification = classify_payment(PaymentIntent.CONTRIBUTION_REPAYMENT, 1_500_000,
                                          True, installment=1_000_000,
                                          loan_balance=1_200_000)
        result = post_classified(member, classification, "1400-03-01")

        assert result.member.loan_balance == 200_000
        assert result.member.deposit == 500_000
        notes = {p.type: p.note for p in result.payments}
        assert notes[PaymentType.REPAYMENT] == INSTALLMENT_NOTE
        assert notes[PaymentType.CONTRIBUTION] == "سپرده"

    def test_operator_note_is_appended(self):
        member = make_member(loan_balance=1_200_000)
        classification = classify_payment(PaymentIntent.CONTRIBUTION_REPAYMENT, 1_500_000,
                                          True, installment=1_000_000,
                                          loan_balance=1_200_000)
        result = post_classified(member, classification, "1400-03-01", note="Farvardin")
        notes = {p.type: p.note for p in result.payments}
        assert notes[PaymentType.REPAYMENT] == "قسط — Farvardin"
        assert notes[PaymentType.CONTRIBUTION] == "سپرده — Farvardin"

    def test_rejection_raises_and_posts_nothing(self):
        """Scenario C"""
        member = make_member(deposit=100)
        classification = classify_payment(PaymentIntent.REPAYMENT, 500_000, False)
        with pytest.raises(BusinessRuleError):
            post_classified(member, classification, "1400-03-01")
        assert member.deposit == 100
        assert member.loan_balance == 0

    def test_receipt_image_copied_to_every_leg(self):
        member = make_member(loan_balance=1_200_000)
        classification = classify_payment(PaymentIntent.CONTRIBUTION_REPAYMENT, 1_500_000,
                                          True, installment=1_000_000,
                                          loan_balance=1_200_000)
        result = post_classified(member, classification, "1400-03-01",
                                 receipt_image_path="receipts/a.jpg")
        assert all(p.receipt_image_path == "receipts/a.jpg" for p in result.payments)


class TestWithdrawal:
    """Test withdrawals from deposit"""

    def test_scenario_d_deduct_loan_capped_by_loan_balance(self):
        member = make_member(deposit=500_000, loan_balance=300_000)
        with pytest.raises(ValidationError) as exc:
            post_withdrawal(member, 400_000, WithdrawalMode.DEDUCT_LOAN, "1400-03-01")
        assert exc.value.error_code == "exceeds_loan_balance"

    def test_deduct_loan(self):
        member = make_member(deposit=500_000, loan_balance=300_000)
        result = post_withdrawal(member, 300_000, WithdrawalMode.DEDUCT_LOAN, "1400-03-01")

        assert result.member.deposit == 200_000
        assert result.member.loan_balance == 0
        assert result.payments[0].type == PaymentType.REPAYMENT
        assert result.payments[0].note == DEPOSIT_DEDUCTION_NOTE
        assert result.payments[0].is_deposit_deduction
        assert result.fund_log == []

    def test_transfer(self):
        member = make_member(deposit=500_000, loan_balance=300_000)
        result = post_withdrawal(member, 450_000, WithdrawalMode.TRANSFER, "1400-03-01",
                                 card_number="6037991234567890")

        assert result.member.deposit == 50_000
        assert result.member.loan_balance == 300_000
        assert result.payments == []
        entry = result.fund_log[0]
        assert entry.type == FundLogType.OUT
        assert entry.amount == 450_000
        assert entry.ref_type == "withdrawal_transfer"
        assert "6037991234567890" in entry.note

    def test_transfer_requires_card(self):
        with pytest.raises(ValidationError):
            post_withdrawal(make_member(deposit=100), 50, WithdrawalMode.TRANSFER, "1400-03-01")

    def test_exceeds_deposit(self):
        with pytest.raises(ValidationError) as exc:
            post_withdrawal(make_member(deposit=100), 101, WithdrawalMode.TRANSFER,
                            "1400-03-01", card_number="1234")
        assert exc.value.error_code == "exceeds_deposit"

    def test_no_deposit(self):
        with pytest.raises(BusinessRuleError):
            post_withdrawal(make_member(deposit=0, loan_balance=100), 10,
                            WithdrawalMode.DEDUCT_LOAN, "1400-03-01")


class TestNonNegativeBalances:
    """Balances never go negative across a posting sequence"""

    def test_sequence_keeps_balances_non_negative(self):
        member = make_member(deposit=0, loan_balance=1_000)
        steps = [
            lambda m: post_repayment(m, 600, "1400-01-01"),
            lambda m: post_contribution(m, 400, "1400-01-02"),
            lambda m: post_repayment(m, 900, "1400-01-03"),
            lambda m: post_withdrawal(m, 400, WithdrawalMode.TRANSFER, "1400-01-04",
                                      card_number="1111"),
        ]
        for step in steps:
            member = step(member).member
            assert member.deposit >= 0
            assert member.loan_balance >= 0
        assert member.deposit == 0
        assert member.loan_balance == 0


class NonTransactionalStorage(InMemoryStorage):
    """In-memory store that behaves like the REST store: no rollback"""

    supports_transactions = False

    def __init__(self, fail_on_table=None, fail_after=0):
        super().__init__()
        self.fail_on_table = fail_on_table
        self.fail_after = fail_after
        self.creates = 0

    def begin_transaction(self):
        pass

    def commit(self):
        pass

    def rollback(self):
        pass

    def create(self, table, data, idempotency_key=None):
        if table == self.fail_on_table:
            if self.creates >= self.fail_after:
                raise StoreError("connection reset")
            self.creates += 1
        return super().create(table, data, idempotency_key)


class FailingTransactionalStorage(InMemoryStorage):
    """Transactional in-memory store whose payment writes fail"""

    def create(self, table, data, idempotency_key=None):
        if table == "payments":
            raise StoreError("connection reset")
        return super().create(table, data, idempotency_key)


def store_member(storage, member):
    storage.create("members", member.to_dict())
    return Member.from_dict(storage.load("members", member.id))


class TestLedgerWriter:
    """Test committing posting results"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.writer = LedgerWriter(self.storage)
        self.member = store_member(self.storage, make_member(loan_balance=1_200_000))

    def test_commit_writes_member_and_payments(self):
        classification = classify_payment(PaymentIntent.CONTRIBUTION_REPAYMENT, 1_500_000,
                                          True, installment=1_000_000,
                                          loan_balance=1_200_000)
        result = post_classified(self.member, classification, "1400-03-01")
        stored = self.writer.commit(result)

        assert stored.member.version == self.member.version + 1
        assert stored.member.deposit == 500_000
        assert len(self.storage.load_all("payments")) == 2

        reloaded = Member.from_dict(self.storage.load("members", self.member.id))
        assert reloaded.loan_balance == 200_000

    def test_commit_writes_fund_log(self):
        member = store_member(self.storage, make_member(deposit=1000, member_id="member_2"))
        result = post_withdrawal(member, 400, WithdrawalMode.TRANSFER, "1400-03-01",
                                 card_number="1234")
        self.writer.commit(result)
        entries = self.storage.load_all("fund_log")
        assert len(entries) == 1
        assert entries[0]["type"] == "out"

    def test_stale_snapshot_rejected(self):
        result = post_contribution(self.member, 100, "1400-03-01")
        # Someone else writes the member first
        self.storage.update("members", self.member.id, {"phone": "0935"})

        with pytest.raises(StaleStateError):
            self.writer.commit(result)
        assert self.storage.load_all("payments") == []

    def test_extra_steps_run_after_ledger(self):
        calls = []
        result = post_contribution(self.member, 100, "1400-03-01")
        self.writer.commit(result, extra_steps=[
            ("marker", lambda: calls.append(len(self.storage.load_all("payments"))))
        ])
        assert calls == [1]

    def test_transactional_failure_rolls_back(self):
        storage = FailingTransactionalStorage()
        member = store_member(storage, make_member(loan_balance=500))
        writer = LedgerWriter(storage)

        with pytest.raises(StoreError) as exc:
            writer.commit(post_repayment(member, 100, "1400-03-01"))
        assert not isinstance(exc.value, InconsistentStateError)

        reloaded = Member.from_dict(storage.load("members", member.id))
        assert reloaded.loan_balance == 500
        assert reloaded.version == member.version

    def test_partial_write_reported_as_inconsistent(self):
        storage = NonTransactionalStorage(fail_on_table="payments", fail_after=1)
        member = store_member(storage, make_member(loan_balance=1_200_000))
        writer = LedgerWriter(storage)

        classification = classify_payment(PaymentIntent.CONTRIBUTION_REPAYMENT, 1_500_000,
                                          True, installment=1_000_000,
                                          loan_balance=1_200_000)
        result = post_classified(member, classification, "1400-03-01")

        with pytest.raises(InconsistentStateError) as exc:
            writer.commit(result)

        assert exc.value.completed_steps[0] == "member"
        assert exc.value.completed_steps[1].startswith("payment:repayment")
        assert exc.value.failed_step.startswith("payment:contribution")
        assert len(storage.load_all("payments")) == 1

    def test_failure_before_any_write_is_plain_store_error(self):
        storage = NonTransactionalStorage()
        writer = LedgerWriter(storage)
        ghost = make_member(member_id="missing")

        with pytest.raises(Exception) as exc:
            writer.commit(post_contribution(ghost, 100, "1400-03-01"))
        assert not isinstance(exc.value, InconsistentStateError)
