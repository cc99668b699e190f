"""
Lending system wiring and the dependency that hands it to the routes
"""

from typing import Optional

from ..audit import AuditTrail
from ..config import MicrofinanceConfig, get_config
from ..loans import LoanManager
from ..repayments import RepaymentManager
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """Storage, audit trail and managers initialized together"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[MicrofinanceConfig] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage)
        self.loan_manager = LoanManager(self.storage, self.audit_trail)
        self.repayment_manager = RepaymentManager(
            self.storage, self.loan_manager, self.audit_trail, self.config
        )

    def close(self) -> None:
        self.storage.close()


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Dependency returning the process-wide lending system, created on first use"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system
