"""
Banking ledger system with all components wired to one storage backend
"""

from typing import Optional

from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import AccountManager, AccountRepository
from .ledger import LedgerWriter
from .transfers import TransferService
from .summary import TransactionSummaryAggregator
from .statements import StatementService
from .config import LedgerConfig, get_config


class BankingSystem:
    """Core ledger system with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[LedgerConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.account_repository = AccountRepository(self.storage)
        self.ledger = LedgerWriter(self.storage, self.account_repository,
                                   max_page_size=self.config.max_page_size)
        self.account_manager = AccountManager(
            self.storage, self.account_repository, self.ledger, self.audit_trail,
            max_page_size=self.config.max_page_size
        )
        self.transfer_service = TransferService(
            self.storage, self.account_repository, self.ledger, self.audit_trail,
            default_currency=self.config.default_currency,
            max_page_size=self.config.max_page_size
        )
        self.summary_aggregator = TransactionSummaryAggregator(
            self.account_repository, self.ledger,
            default_days=self.config.summary_default_days,
            max_days=self.config.summary_max_days
        )
        self.statement_service = StatementService(
            self.storage, self.account_repository, self.ledger, self.audit_trail,
            max_days=self.config.statement_max_days,
            max_page_size=self.config.max_page_size
        )

    def close(self) -> None:
        self.storage.close()
