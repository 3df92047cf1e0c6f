"""
Receipts and Loan Requests Module

Payment receipts and loan requests that members send in through the
Telegram bot. Both wait in ``pending`` until an operator approves or rejects
them; an approved receipt becomes posted payments.
"""

from dataclasses import dataclass
from typing import List, Optional, Union
from enum import Enum
import uuid

from .classifier import PaymentIntent
from .exceptions import BusinessRuleError, NotFoundError, ValidationError
from .loans import LoanManager
from .logging_config import get_logger, log_action
from .members import Member, MemberManager
from .payments import PaymentOutcome, PaymentProcessor
from .storage import StorageInterface, StorageRecord, utc_now

logger = get_logger("qard.receipts")


class ReviewStatus(Enum):
    """Review state shared by receipts and loan requests"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ReceiptSubmission(StorageRecord):
    """Payment receipt image waiting for operator review"""
    member_id: str
    image_path: str
    member_name: Optional[str] = None
    status: ReviewStatus = ReviewStatus.PENDING
    note: Optional[str] = None            # Dependents covered by a family payment
    approved_at: Optional[str] = None
    reject_message: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = ReviewStatus(self.status)


@dataclass
class LoanRequest(StorageRecord):
    """Loan request sent from Telegram"""
    telegram_chat_id: str
    user_name: str
    status: ReviewStatus = ReviewStatus.PENDING
    reject_reason: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = ReviewStatus(self.status)


@dataclass
class WaitingListEntry:
    """Approved loan request with the member it belongs to"""
    request: LoanRequest
    member: Optional[Member]
    has_active_loan: bool


def _require_pending(status: ReviewStatus, what: str) -> None:
    if status != ReviewStatus.PENDING:
        raise BusinessRuleError(f"{what} is already {status.value}", "invalid_transition")


class ReceiptManager:
    """
    Reviews receipt submissions
    """

    def __init__(self, storage: StorageInterface, payment_processor: PaymentProcessor):
        self.storage = storage
        self.payment_processor = payment_processor
        self.table_name = "receipt_submissions"

    def submit_receipt(self, member_id: str, image_path: str,
                       note: Optional[str] = None) -> ReceiptSubmission:
        """Record a receipt sent by a member; it waits for review"""
        if not image_path:
            raise ValidationError("Receipt image is required", "missing_field")
        member = self.payment_processor.member_manager.require_member(member_id)

        now = utc_now()
        receipt = ReceiptSubmission(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            member_id=member.id,
            member_name=member.full_name,
            image_path=image_path,
            note=note
        )
        data = self.storage.create(self.table_name, receipt.to_dict(),
                                   idempotency_key=receipt.id)
        log_action(logger, "info", "Receipt submitted", member_id=member.id,
                   action="receipt_submitted", resource="receipt",
                   extra={"receipt_id": receipt.id})
        return ReceiptSubmission.from_dict(data)

    def get_receipt(self, receipt_id: str) -> ReceiptSubmission:
        data = self.storage.load(self.table_name, receipt_id)
        if not data:
            raise NotFoundError(f"Receipt {receipt_id} not found", "receipt_not_found")
        return ReceiptSubmission.from_dict(data)

    def list_receipts(self, status: Optional[ReviewStatus] = None) -> List[ReceiptSubmission]:
        """List receipts, newest first"""
        if status:
            records = self.storage.find(self.table_name, {"status": status.value})
        else:
            records = self.storage.load_all(self.table_name)
        receipts = [ReceiptSubmission.from_dict(d) for d in records]
        return sorted(receipts, key=lambda r: r.created_at, reverse=True)

    def list_pending(self) -> List[ReceiptSubmission]:
        return self.list_receipts(ReviewStatus.PENDING)

    def approve(
        self,
        receipt_id: str,
        amount: int,
        date: str,
        intent: Union[PaymentIntent, str],
        confirmed: bool = False,
        note: Optional[str] = None
    ) -> PaymentOutcome:
        """
        Approve a receipt by posting it as a payment

        The payment goes through the same classification as a manual one; the
        receipt is marked approved in the same commit as the payment records.
        When the split still needs confirmation the receipt stays pending.
        """
        receipt = self.get_receipt(receipt_id)
        _require_pending(receipt.status, "Receipt")

        def mark_approved():
            self.storage.update(self.table_name, receipt.id, {
                "status": ReviewStatus.APPROVED.value,
                "approved_at": utc_now().isoformat()
            }, expected_version=receipt.version)

        outcome = self.payment_processor.submit(
            receipt.member_id,
            intent,
            amount,
            date,
            note=note if note is not None else receipt.note,
            confirmed=confirmed,
            receipt_image_path=receipt.image_path,
            extra_steps=[("receipt_approved", mark_approved)]
        )

        if outcome.is_posted:
            log_action(logger, "info", "Receipt approved", member_id=receipt.member_id,
                       action="receipt_approved", resource="receipt",
                       extra={"receipt_id": receipt.id, "amount": amount})
        return outcome

    def reject(self, receipt_id: str, message: Optional[str] = None) -> ReceiptSubmission:
        """Reject a receipt; the message is what the member is told"""
        receipt = self.get_receipt(receipt_id)
        _require_pending(receipt.status, "Receipt")

        data = self.storage.update(self.table_name, receipt.id, {
            "status": ReviewStatus.REJECTED.value,
            "reject_message": (message or "").strip() or None
        }, expected_version=receipt.version)
        log_action(logger, "info", "Receipt rejected", member_id=receipt.member_id,
                   action="receipt_rejected", resource="receipt",
                   extra={"receipt_id": receipt.id})
        return ReceiptSubmission.from_dict(data)


class LoanRequestManager:
    """
    Reviews loan requests and keeps the waiting list of approved ones
    """

    def __init__(self, storage: StorageInterface, member_manager: MemberManager,
                 loan_manager: LoanManager):
        self.storage = storage
        self.member_manager = member_manager
        self.loan_manager = loan_manager
        self.table_name = "loan_requests"

    def submit_request(self, telegram_chat_id: str, user_name: str) -> LoanRequest:
        """Record a loan request sent from a Telegram chat"""
        if not telegram_chat_id:
            raise ValidationError("Telegram chat id is required", "missing_field")

        now = utc_now()
        request = LoanRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            telegram_chat_id=str(telegram_chat_id),
            user_name=(user_name or "").strip()
        )
        data = self.storage.create(self.table_name, request.to_dict(),
                                   idempotency_key=request.id)
        log_action(logger, "info", "Loan request submitted", action="loan_request_submitted",
                   resource="loan_request", extra={"request_id": request.id})
        return LoanRequest.from_dict(data)

    def get_request(self, request_id: str) -> LoanRequest:
        data = self.storage.load(self.table_name, request_id)
        if not data:
            raise NotFoundError(f"Loan request {request_id} not found", "request_not_found")
        return LoanRequest.from_dict(data)

    def list_requests(self, status: Optional[ReviewStatus] = None) -> List[LoanRequest]:
        """List loan requests, newest first"""
        if status:
            records = self.storage.find(self.table_name, {"status": status.value})
        else:
            records = self.storage.load_all(self.table_name)
        requests = [LoanRequest.from_dict(d) for d in records]
        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    def approve(self, request_id: str) -> LoanRequest:
        request = self.get_request(request_id)
        _require_pending(request.status, "Loan request")

        data = self.storage.update(self.table_name, request.id,
                                   {"status": ReviewStatus.APPROVED.value},
                                   expected_version=request.version)
        log_action(logger, "info", "Loan request approved", action="loan_request_approved",
                   resource="loan_request", extra={"request_id": request.id})
        return LoanRequest.from_dict(data)

    def reject(self, request_id: str, reason: Optional[str] = None) -> LoanRequest:
        request = self.get_request(request_id)
        _require_pending(request.status, "Loan request")

        data = self.storage.update(self.table_name, request.id, {
            "status": ReviewStatus.REJECTED.value,
            "reject_reason": (reason or "").strip() or None
        }, expected_version=request.version)
        log_action(logger, "info", "Loan request rejected", action="loan_request_rejected",
                   resource="loan_request", extra={"request_id": request.id})
        return LoanRequest.from_dict(data)

    def waiting_list(self) -> List[WaitingListEntry]:
        """
        Approved requests, oldest first, each joined to the member linked to
        the requesting Telegram chat
        """
        entries = []
        approved = sorted(self.list_requests(ReviewStatus.APPROVED),
                          key=lambda r: r.created_at)
        for request in approved:
            member = self.member_manager.find_by_telegram_chat_id(request.telegram_chat_id)
            active = bool(member and self.loan_manager.get_active_loan(member.id))
            entries.append(WaitingListEntry(request=request, member=member,
                                            has_active_loan=active))
        return entries
