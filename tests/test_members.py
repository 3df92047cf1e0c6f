"""
Tests for member management
"""

import pytest

from qard_fund.exceptions import NotFoundError, StaleStateError, ValidationError
from qard_fund.members import (
    Member, MemberManager, MemberStatus, total_deposits, total_loan_balance
)
from qard_fund.storage import InMemoryStorage


class TestMember:
    """Test the member record"""

    def test_legacy_record_without_balances(self):
        member = Member.from_dict({
            "id": "m1",
            "full_name": "Sara",
            "phone": "0912",
            "status": "active",
            "deposit": None,
            "loan_balance": None,
            "created_at": "2023-04-01T10:00:00.000Z",
        })
        assert member.deposit == 0
        assert member.loan_balance == 0
        assert member.status == MemberStatus.ACTIVE

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            Member.from_dict({"id": "m1", "full_name": "Sara", "phone": "0912",
                              "deposit": -1})

    def test_with_balances_returns_copy(self):
        member = Member.from_dict({"id": "m1", "full_name": "Sara", "phone": "0912",
                                   "deposit": 100})
        updated = member.with_balances(deposit=200)
        assert updated.deposit == 200
        assert member.deposit == 100
        assert updated.version == member.version


class TestMemberManager:
    """Test member persistence"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = MemberManager(self.storage)

    def test_create_member(self):
        member = self.manager.create_member("  Ali Rezaei ", "09120000000", monthly_amount=500_000)

        assert member.full_name == "Ali Rezaei"
        assert member.deposit == 0
        assert member.loan_balance == 0
        assert member.loan_amount == 0
        assert member.status == MemberStatus.ACTIVE
        assert self.manager.get_member(member.id) == member

    def test_create_requires_name_and_phone(self):
        with pytest.raises(ValidationError):
            self.manager.create_member("", "0912")
        with pytest.raises(ValidationError):
            self.manager.create_member("Ali", " ")

    def test_negative_monthly_amount_rejected(self):
        with pytest.raises(ValidationError):
            self.manager.create_member("Ali", "0912", monthly_amount=-1)

    def test_require_missing_member(self):
        with pytest.raises(NotFoundError):
            self.manager.require_member("nope")

    def test_deactivate_and_filter(self):
        a = self.manager.create_member("Ali", "0912")
        b = self.manager.create_member("Sara", "0935")
        self.manager.deactivate_member(b.id)

        active = self.manager.list_members(MemberStatus.ACTIVE)
        assert [m.id for m in active] == [a.id]
        assert len(self.manager.list_members()) == 2

        reactivated = self.manager.activate_member(b.id)
        assert reactivated.is_active

    def test_save_member_checks_version(self):
        member = self.manager.create_member("Ali", "0912")
        self.manager.save_member(member.with_balances(deposit=100))

        with pytest.raises(StaleStateError):
            self.manager.save_member(member.with_balances(deposit=999))
        assert self.manager.require_member(member.id).deposit == 100

    def test_find_by_telegram_chat_id(self):
        member = self.manager.create_member("Ali", "0912", telegram_chat_id="5551234")
        assert self.manager.find_by_telegram_chat_id("5551234").id == member.id
        assert self.manager.find_by_telegram_chat_id("000") is None

    def test_totals(self):
        a = self.manager.create_member("Ali", "0912")
        b = self.manager.create_member("Sara", "0935")
        self.manager.save_member(a.with_balances(deposit=300, loan_balance=100))
        self.manager.save_member(b.with_balances(deposit=200))

        members = self.manager.list_members()
        assert total_deposits(members) == 500
        assert total_loan_balance(members) == 100
