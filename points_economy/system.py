"""
Points Economy System

Wires the storage, audit trail and every manager together over one store so
that they all share the same units of work.
"""

from typing import Optional

from .audit import AuditTrail
from .catalog import Catalog
from .config import PointsConfig, get_config
from .directory import ParticipantDirectory
from .ledger import PointsLedger
from .ranking import RankingEngine
from .redemptions import RedemptionWorkflow
from .storage import StorageInterface, create_storage


class PointsSystem:
    """Points economy with all components initialized"""

    def __init__(self, storage: StorageInterface, config: Optional[PointsConfig] = None):
        self.config = config or get_config()
        self.storage = storage

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.directory = ParticipantDirectory(self.storage, self.audit_trail)
        self.ledger = PointsLedger(
            self.storage, self.directory, self.audit_trail,
            default_reason=self.config.default_award_reason
        )
        self.catalog = Catalog(self.storage, self.audit_trail)
        self.redemptions = RedemptionWorkflow(
            self.storage, self.directory, self.ledger, self.catalog, self.audit_trail,
            max_page_limit=self.config.requests_page_max_limit
        )
        self.ranking = RankingEngine(self.directory, max_limit=self.config.leaderboard_max_limit)

    @classmethod
    def from_config(cls, config: Optional[PointsConfig] = None) -> 'PointsSystem':
        """Build a system on the store named by ``database_url``"""
        config = config or get_config()
        storage = create_storage(config.database_url, busy_timeout=config.sqlite_busy_timeout_seconds)
        return cls(storage, config)

    def close(self) -> None:
        self.storage.close()
