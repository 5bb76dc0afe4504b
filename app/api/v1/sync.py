# app/api/v1/sync.py
from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List, Optional
import logging

from app.api.deps import get_principal, get_sync_service
from app.api.gzip_route import GzipRoute
from app.core.exceptions import (
    BatchRejectedError, InvalidTimestampError, InvalidCursorError,
    ConflictNotFoundError, ConflictAlreadyResolvedError,
)
from app.core.security import Principal
from app.schemas.sync import (
    SyncBatchRequest, SyncBatchResponse, SyncDeltaResponse, SyncStatusResponse,
    SyncConflictView, ConflictResolutionResponse, SyncLogView,
)
from app.services.sync_service import SyncService

router = APIRouter(prefix="/sync", tags=["Synchronisation"], route_class=GzipRoute)
logger = logging.getLogger(__name__)


# =======================
# Batch (mobile -> serveur)
# =======================
@router.post("/batch", response_model=SyncBatchResponse)
def sync_batch(
    payload: SyncBatchRequest,
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    """
    Applique les opérations du mobile dans l'ordre reçu.
    Répond 200 même si certaines opérations échouent ou sont en conflit.
    """
    try:
        return service.process_batch(payload, principal)
    except BatchRejectedError as e:
        logger.warning(f"Batch rejeté ({e.code.value}): {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": e.code.value, "message": e.message}
        )
    except Exception:
        logger.exception("Erreur lors du traitement du batch")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur interne lors de la synchronisation"
        )


# =======================
# Delta (serveur -> mobile)
# =======================
@router.get("/delta", response_model=SyncDeltaResponse)
def sync_delta(
    last_sync_timestamp: str = Query(..., alias="lastSyncTimestamp"),
    entity_types: Optional[List[str]] = Query(None, alias="entityTypes"),
    limit: Optional[int] = Query(None, alias="limit"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    app_version: Optional[str] = Query(None, alias="appVersion"),
    sync_session_id: Optional[str] = Query(None, alias="syncSessionId"),
    cursor: Optional[str] = Query(None, alias="cursor"),
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    """Entités modifiées depuis lastSyncTimestamp (strictement après)"""
    try:
        return service.get_delta(
            last_sync_timestamp,
            entity_types=entity_types,
            limit=limit,
            device_id=device_id,
            app_version=app_version,
            sync_session_id=sync_session_id,
            cursor=cursor,
        )
    except (InvalidTimestampError, InvalidCursorError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Erreur lors du calcul du delta")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur interne lors de la synchronisation"
        )


# =======================
# Statut / forçage
# =======================
@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    return service.get_status()


@router.post("/force")
def force_sync(
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    return service.force_sync(principal)


# =======================
# Conflits
# =======================
@router.get("/conflicts", response_model=List[SyncConflictView])
def list_conflicts(
    user_id: Optional[int] = Query(None, alias="userId"),
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    """Conflits en attente de résolution"""
    return service.list_conflicts(user_id)


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResolutionResponse)
def resolve_conflict(
    conflict_id: int,
    resolution: str = Query(...),
    resolved_by: Optional[str] = Query(None, alias="resolvedBy"),
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    """Clôt un conflit ; l'entité visée n'est pas modifiée"""
    try:
        return service.resolve_conflict(conflict_id, resolution, resolved_by, principal)
    except ConflictNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictAlreadyResolvedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# =======================
# Journal d'audit
# =======================
@router.get("/logs", response_model=List[SyncLogView])
def list_sync_logs(
    limit: Optional[int] = Query(None, ge=1, le=500),
    sync_type: Optional[str] = Query(None, alias="syncType"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    service: SyncService = Depends(get_sync_service),
    principal: Optional[Principal] = Depends(get_principal),
):
    try:
        return service.list_logs(limit, sync_type=sync_type, device_id=device_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
