# app/services/sync_service.py
import logging
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.security import Principal
from app.core.sync_constants import ENTITY_TYPE_ORDER, SyncType
from app.models.sync_conflict import SyncConflict
from app.schemas.sync import (
    SyncBatchRequest, SyncBatchResponse, SyncDeltaRequest, SyncDeltaResponse,
    SyncStatusResponse, SyncConflictView, ConflictResolutionResponse, SyncLogView,
)
from app.services.sync_adapters import get_adapter
from app.services.sync_conflicts import ConflictResolver, parse_strategy, decode_snapshot
from app.services.sync_delta import DeltaProducer
from app.services.sync_engine import BatchCoordinator
from app.services.sync_logger import SyncLogger
from app.services.sync_stores import EntityStore, ConflictStore
from app.utils.timestamps import utc_now, parse_timestamp, format_timestamp

logger = logging.getLogger(__name__)


def conflict_to_view(conflict: SyncConflict) -> SyncConflictView:
    return SyncConflictView(
        id=conflict.id,
        user_id=conflict.user_id,
        entity_type=conflict.entity_type,
        entity_id=conflict.entity_id,
        conflict_type=conflict.conflict_type,
        local_data=decode_snapshot(conflict.local_data),
        server_data=decode_snapshot(conflict.server_data),
        local_version=conflict.local_version,
        server_version=conflict.server_version,
        resolution_strategy=conflict.resolution_strategy,
        resolved_at=conflict.resolved_at,
        resolved_by=conflict.resolved_by,
        conflict_details=conflict.conflict_details,
        created_at=conflict.created_at,
    )


class SyncService:
    """Point d'entrée unique du routeur /sync"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.sync_logger = SyncLogger(session_factory)
        self.resolver = ConflictResolver(session_factory)

    # ============================
    # BATCH / DELTA
    # ============================
    def process_batch(self, request: SyncBatchRequest, principal: Optional[Principal] = None) -> SyncBatchResponse:
        coordinator = BatchCoordinator(
            self.session_factory,
            sync_logger=self.sync_logger,
            principal_user_id=principal.user_id if principal else None,
        )
        return coordinator.process(request)

    def get_delta(
        self,
        last_sync_timestamp: str,
        entity_types: Optional[List[str]] = None,
        limit: Optional[int] = None,
        device_id: Optional[str] = None,
        app_version: Optional[str] = None,
        sync_session_id: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> SyncDeltaResponse:
        """
        Raises:
            InvalidTimestampError: watermark illisible
            InvalidCursorError: curseur illisible
            ValueError: type d'entité inconnu dans le filtre
        """
        request = SyncDeltaRequest(
            last_sync_timestamp=parse_timestamp(last_sync_timestamp),
            entity_types=entity_types,
            limit=limit,
            device_id=device_id,
            app_version=app_version,
            sync_session_id=sync_session_id,
            cursor=cursor,
        )
        return DeltaProducer(self.session_factory, sync_logger=self.sync_logger).produce(request)

    # ============================
    # STATUT
    # ============================
    def get_status(self) -> SyncStatusResponse:
        with self.session_factory() as db:
            entity_store = EntityStore(db)
            counts = {
                entity_type.value: entity_store.count(get_adapter(entity_type.value))
                for entity_type in ENTITY_TYPE_ORDER
            }
            pending_by_type = ConflictStore(db).count_unresolved_by_type()

        return SyncStatusResponse(
            status="active",
            version=settings.APP_VERSION,
            server_time=utc_now(),
            entity_counts=counts,
            pending_conflicts=sum(pending_by_type.values()),
            pending_conflicts_by_type=pending_by_type,
        )

    def force_sync(self, principal: Optional[Principal] = None) -> dict:
        # Aucun effet : point d'accroche opérateur
        logger.info(f"Synchronisation forcée demandée par {principal.name if principal else 'anonyme'}")
        return {"message": "Synchronisation forcée prise en compte", "server_time": format_timestamp(utc_now())}

    # ============================
    # CONFLITS
    # ============================
    def list_conflicts(self, user_id: Optional[int] = None) -> List[SyncConflictView]:
        return [conflict_to_view(c) for c in self.resolver.list_unresolved(user_id)]

    def resolve_conflict(
        self,
        conflict_id: int,
        resolution: str,
        resolved_by: Optional[str] = None,
        principal: Optional[Principal] = None,
    ) -> ConflictResolutionResponse:
        """
        Raises:
            ValueError: stratégie invalide
            ConflictNotFoundError, ConflictAlreadyResolvedError
        """
        strategy = parse_strategy(resolution)
        actor = (principal.name if principal and principal.name else None) or resolved_by or "system"
        conflict = self.resolver.resolve(conflict_id, strategy, actor)
        return ConflictResolutionResponse(
            message=f"Conflit {conflict_id} résolu ({strategy.value})",
            conflict=conflict_to_view(conflict),
        )

    # ============================
    # JOURNAL
    # ============================
    def list_logs(
        self,
        limit: Optional[int] = None,
        sync_type: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> List[SyncLogView]:
        if sync_type:
            sync_type = SyncType(sync_type.strip().upper()).value
        logs = self.sync_logger.recent(
            limit or settings.SYNC_LOG_DEFAULT_LIMIT, sync_type=sync_type, device_id=device_id
        )
        return [
            SyncLogView(
                id=log.id,
                sync_type=log.sync_type,
                device_id=log.device_id,
                app_version=log.app_version,
                sync_session_id=log.sync_session_id,
                operations_count=log.operations_count,
                success_count=log.success_count,
                error_count=log.error_count,
                conflict_count=log.conflict_count,
                processing_time_ms=log.processing_time_ms,
                timestamp=log.timestamp,
            )
            for log in logs
        ]
