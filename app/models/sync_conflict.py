# app/models/sync_conflict.py
from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Text, Index

from app.db.base import Base
from app.utils.timestamps import utc_now


class SyncConflict(Base):
    """
    Conflit de synchronisation en attente de résolution manuelle.
    resolved_at NULL = conflit en attente.
    """
    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False, default=0, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    conflict_type = Column(
        String(50),
        nullable=False,
        comment="VERSION_MISMATCH, UPDATE_DELETE, DELETE_UPDATE, CREATE_CONFLICT"
    )

    # Instantanés sérialisés en JSON
    local_data = Column(Text, nullable=False)
    server_data = Column(Text, nullable=True)

    # Versions = epoch millisecondes des dates de modification
    local_version = Column(BigInteger, nullable=True)
    server_version = Column(BigInteger, nullable=True)

    resolution_strategy = Column(String(50), nullable=True, comment="SERVER_WINS, CLIENT_WINS, MANUAL, MERGED")
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(100), nullable=True)

    conflict_details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_sync_conflicts_pending", "resolved_at", "user_id"),
        Index("ix_sync_conflicts_entity", "entity_type", "entity_id"),
    )

    @property
    def is_pending(self) -> bool:
        return self.resolved_at is None

    def __repr__(self):
        return f"<SyncConflict {self.id} {self.conflict_type} {self.entity_type}:{self.entity_id}>"
