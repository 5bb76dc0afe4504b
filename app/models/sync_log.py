# app/models/sync_log.py
from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Index

from app.db.base import Base
from app.utils.timestamps import utc_now


class SyncLog(Base):
    """Trace d'audit : une ligne par appel batch ou delta (ajout seul)"""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    sync_type = Column(String(20), nullable=False, comment="BATCH, DELTA")
    device_id = Column(String(100), nullable=True, index=True)
    app_version = Column(String(50), nullable=True)
    sync_session_id = Column(String(64), nullable=True, index=True)

    operations_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    conflict_count = Column(Integer, nullable=False, default=0)
    processing_time_ms = Column(BigInteger, nullable=False, default=0)

    timestamp = Column(DateTime, default=utc_now, nullable=False, index=True)

    __table_args__ = (
        Index("ix_sync_logs_type_timestamp", "sync_type", "timestamp"),
    )
