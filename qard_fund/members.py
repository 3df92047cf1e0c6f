"""
Member Management Module

Member profiles and their two running balances: ``deposit`` (pooled savings)
and ``loan_balance`` (what is still owed on the active loan). Members are
never deleted; they are deactivated.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, utc_now
from .exceptions import NotFoundError, ValidationError
from .logging_config import get_logger, log_action

logger = get_logger("qard.members")


class MemberStatus(Enum):
    """Member status"""
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class Member(StorageRecord):
    """
    Fund member with deposit and loan balances.

    ``version`` is the store's optimistic-concurrency stamp; every write of a
    member snapshot is conditional on it.
    """
    full_name: str
    phone: str
    monthly_amount: int = 0             # Contracted monthly deposit, informational
    status: MemberStatus = MemberStatus.ACTIVE
    deposit: int = 0
    loan_balance: int = 0
    loan_amount: int = 0                # Cumulative principal ever disbursed
    national_id: Optional[str] = None
    join_date: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = MemberStatus(self.status)
        # Legacy records may lack balances
        self.deposit = self.deposit or 0
        self.loan_balance = self.loan_balance or 0
        self.loan_amount = self.loan_amount or 0
        self.monthly_amount = self.monthly_amount or 0

        if self.deposit < 0 or self.loan_balance < 0:
            raise ValueError("Member balances must not be negative")

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def with_balances(self, deposit: Optional[int] = None,
                      loan_balance: Optional[int] = None,
                      loan_amount: Optional[int] = None) -> 'Member':
        """Return a copy with updated balances; the original is left untouched"""
        return replace(
            self,
            deposit=self.deposit if deposit is None else deposit,
            loan_balance=self.loan_balance if loan_balance is None else loan_balance,
            loan_amount=self.loan_amount if loan_amount is None else loan_amount,
            updated_at=utc_now()
        )


def total_deposits(members: List[Member]) -> int:
    return sum(m.deposit for m in members)


def total_loan_balance(members: List[Member]) -> int:
    return sum(m.loan_balance for m in members)


class MemberManager:
    """
    Manages member profiles and persists member snapshots
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "members"

    def create_member(
        self,
        full_name: str,
        phone: str,
        monthly_amount: int = 0,
        national_id: Optional[str] = None,
        join_date: Optional[str] = None,
        telegram_chat_id: Optional[str] = None
    ) -> Member:
        """
        Register a new member with zero balances

        Args:
            full_name: Member's full name
            phone: Contact phone number
            monthly_amount: Contracted monthly deposit (informational)
            national_id: National ID, used to link a Telegram account
            join_date: Membership date (YYYY-MM-DD)
            telegram_chat_id: Linked Telegram chat

        Returns:
            Created Member object
        """
        if not full_name or not full_name.strip():
            raise ValidationError("Full name is required", "missing_field")
        if not phone or not phone.strip():
            raise ValidationError("Phone is required", "missing_field")
        if monthly_amount < 0:
            raise ValidationError("Monthly amount must not be negative", "invalid_amount")

        now = utc_now()
        member = Member(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            full_name=full_name.strip(),
            phone=phone.strip(),
            monthly_amount=monthly_amount,
            national_id=national_id,
            join_date=join_date,
            telegram_chat_id=telegram_chat_id
        )

        stored = self.storage.create(self.table_name, member.to_dict(), idempotency_key=member.id)
        member = self._member_from_dict(stored)

        log_action(logger, "info", "Member created", member_id=member.id,
                   action="member_created", resource="member")
        return member

    def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID"""
        data = self.storage.load(self.table_name, member_id)
        if data:
            return self._member_from_dict(data)
        return None

    def require_member(self, member_id: str) -> Member:
        """Get member by ID, raising NotFoundError if missing"""
        member = self.get_member(member_id)
        if not member:
            raise NotFoundError(f"Member {member_id} not found", "member_not_found")
        return member

    def list_members(self, status: Optional[MemberStatus] = None) -> List[Member]:
        """List members, optionally filtered by status"""
        members = [self._member_from_dict(d) for d in self.storage.load_all(self.table_name)]
        if status:
            members = [m for m in members if m.status == status]
        return members

    def find_by_telegram_chat_id(self, chat_id: str) -> Optional[Member]:
        """Find the member linked to a Telegram chat"""
        for member in self.list_members():
            if member.telegram_chat_id and str(member.telegram_chat_id) == str(chat_id):
                return member
        return None

    def save_member(self, member: Member) -> Member:
        """
        Write a full member snapshot, conditional on the version it was read at

        Raises:
            StaleStateError: if the member changed in the meantime
        """
        stored = self.storage.update(
            self.table_name, member.id, member.to_dict(),
            expected_version=member.version
        )
        return self._member_from_dict(stored)

    def set_status(self, member_id: str, status: MemberStatus) -> Member:
        """Activate or deactivate a member"""
        member = self.require_member(member_id)
        if member.status == status:
            return member

        member = replace(member, status=status, updated_at=utc_now())
        member = self.save_member(member)

        log_action(logger, "info", f"Member status set to {status.value}",
                   member_id=member.id, action="member_status_changed", resource="member")
        return member

    def deactivate_member(self, member_id: str) -> Member:
        return self.set_status(member_id, MemberStatus.INACTIVE)

    def activate_member(self, member_id: str) -> Member:
        return self.set_status(member_id, MemberStatus.ACTIVE)

    def _member_from_dict(self, data: Dict[str, Any]) -> Member:
        return Member.from_dict(data)
