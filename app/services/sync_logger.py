# app/services/sync_logger.py
import logging
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from app.core.sync_constants import SyncType
from app.models.sync_log import SyncLog
from app.services.sync_stores import SyncLogStore
from app.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


class SyncLogger:
    """
    Ajoute une ligne d'audit par appel batch ou delta.
    Un échec d'écriture du journal ne fait jamais échouer l'appelant.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def log(
        self,
        sync_type: SyncType,
        device_id: Optional[str],
        app_version: Optional[str],
        sync_session_id: Optional[str],
        operations_count: int,
        success_count: int,
        error_count: int,
        conflict_count: int,
        processing_time_ms: int,
    ) -> Optional[SyncLog]:
        try:
            with self.session_factory() as db, db.begin():
                entry = SyncLogStore(db).append(SyncLog(
                    sync_type=sync_type.value,
                    device_id=device_id,
                    app_version=app_version,
                    sync_session_id=sync_session_id,
                    operations_count=operations_count,
                    success_count=success_count,
                    error_count=error_count,
                    conflict_count=conflict_count,
                    processing_time_ms=processing_time_ms,
                    timestamp=utc_now(),
                ))
            return entry
        except Exception:
            logger.exception(f"Impossible d'écrire le journal de synchronisation {sync_type.value} ({sync_session_id})")
            return None

    def recent(
        self,
        limit: int,
        sync_type: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> List[SyncLog]:
        with self.session_factory() as db:
            return SyncLogStore(db).recent(limit, sync_type=sync_type, device_id=device_id)
