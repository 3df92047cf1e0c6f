"""
Shared API dependencies
"""

import threading
from typing import Optional

from ..config import QardConfig, get_config
from ..http_storage import HttpStorage
from ..ledger import LedgerWriter
from ..loans import LoanManager
from ..logging_config import get_logger
from ..members import MemberManager
from ..payments import PaymentProcessor
from ..receipts import LoanRequestManager, ReceiptManager
from ..reporting import ReportingEngine
from ..storage import InMemoryStorage, StorageInterface

logger = get_logger("qard.api")


def create_storage(settings: QardConfig) -> StorageInterface:
    """REST store when a URL is configured, in-memory store otherwise"""
    if settings.store_url:
        logger.info(f"Using REST store at {settings.store_url}")
        return HttpStorage(
            base_url=settings.store_url,
            timeout=settings.store_timeout,
            api_key=settings.store_api_key or None
        )
    logger.warning("No store URL configured, using in-memory store")
    return InMemoryStorage()


class FundSystem:
    """Fund core with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 settings: Optional[QardConfig] = None):
        self.config = settings or get_config()
        self.storage = storage or create_storage(self.config)

        self.member_manager = MemberManager(self.storage)
        self.ledger_writer = LedgerWriter(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.member_manager, self.ledger_writer,
            enforce_ceiling=self.config.enforce_lending_ceiling,
            default_due_months=self.config.default_due_months
        )
        self.payment_processor = PaymentProcessor(
            self.storage, self.member_manager, self.loan_manager, self.ledger_writer
        )
        self.receipt_manager = ReceiptManager(self.storage, self.payment_processor)
        self.loan_request_manager = LoanRequestManager(
            self.storage, self.member_manager, self.loan_manager
        )
        self.reporting = ReportingEngine(self.storage, self.member_manager, self.loan_manager)

    def store_healthy(self) -> bool:
        if isinstance(self.storage, HttpStorage):
            return self.storage.health_check()
        return True

    def close(self) -> None:
        self.storage.close()


# Global fund system instance, built on first use
fund_system: Optional[FundSystem] = None
_fund_system_lock = threading.Lock()


def get_fund_system() -> FundSystem:
    global fund_system
    if fund_system is None:
        with _fund_system_lock:
            if fund_system is None:
                fund_system = FundSystem()
    return fund_system
