# app/schemas/sync.py
from pydantic import BaseModel, Field, field_validator, PlainSerializer
from typing import Optional, List, Dict, Any, Annotated
from datetime import datetime

from app.core.sync_constants import (
    OperationStatus, ConflictType, ConflictPriority, SyncErrorCode,
)
from app.utils.timestamps import format_timestamp

# Sérialisé en ISO-8601 milliseconde : 2024-01-01T10:00:00.000Z
Timestamp = Annotated[datetime, PlainSerializer(format_timestamp, return_type=Optional[str], when_used="json")]


# ============================
# BATCH : REQUÊTE
# ============================
class SyncOperation(BaseModel):
    """
    Une mutation créée hors ligne sur le mobile.

    Le schéma reste permissif : une opération mal formée est signalée dans
    son propre résultat (INVALID_PAYLOAD / UNSUPPORTED_ENTITY) par le
    processeur, sans rejeter le batch entier.
    """
    entity_type: Optional[str] = Field(None, description="product, sale, stock_movement")
    operation_type: Optional[str] = Field(None, description="create, update, delete")
    entity_id: Optional[str] = Field(None, description="ID serveur (update/delete)")
    local_id: Optional[str] = Field(None, description="ID de corrélation côté client")
    entity_data: Optional[Any] = None
    timestamp: Optional[Any] = None
    priority: Optional[Any] = None
    retry_count: Optional[Any] = None

    @field_validator('entity_id', 'local_id', 'entity_type', 'operation_type', mode='before')
    def coerce_text(cls, v):
        # Les identifiants illisibles sont rejetés plus tard par parse_id
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator('entity_type', 'operation_type')
    def normalize_kind(cls, v):
        return v.strip().lower() if v is not None else None


class SyncBatchRequest(BaseModel):
    operations: List[SyncOperation] = Field(default_factory=list)
    client_timestamp: Optional[datetime] = None
    device_id: Optional[str] = Field(None, max_length=100)
    app_version: Optional[str] = Field(None, max_length=50)


# ============================
# BATCH : RÉPONSE
# ============================
class OperationResult(BaseModel):
    entity_id: Optional[str] = None
    local_id: Optional[str] = None
    server_id: Optional[str] = None
    entity_type: Optional[str] = None
    operation_type: Optional[str] = None
    status: OperationStatus = OperationStatus.SKIPPED
    message: Optional[str] = None
    timestamp: Optional[Timestamp] = None


class SyncConflictEnvelope(BaseModel):
    conflict_id: str
    entity_id: Optional[str] = None
    entity_type: str
    conflict_type: ConflictType
    local_data: Optional[Dict[str, Any]] = None
    server_data: Optional[Dict[str, Any]] = None
    priority: ConflictPriority = ConflictPriority.MEDIUM
    timestamp: Optional[Timestamp] = None
    message: Optional[str] = None


class SyncErrorEnvelope(BaseModel):
    entity_id: Optional[str] = None
    local_id: Optional[str] = None
    entity_type: Optional[str] = None
    operation_type: Optional[str] = None
    error_code: SyncErrorCode
    error_message: Optional[str] = None
    timestamp: Optional[Timestamp] = None


class SyncStatistics(BaseModel):
    by_entity_type: Dict[str, int] = Field(default_factory=dict)
    by_operation_type: Dict[str, int] = Field(default_factory=dict)
    average_processing_time_ms: float = 0.0
    total_data_size_bytes: int = 0


class SyncBatchResponse(BaseModel):
    success_count: int = 0
    error_count: int = 0
    conflict_count: int = 0
    skipped_count: int = 0
    total_processed: int = 0
    processing_time_ms: int = 0
    server_timestamp: Optional[Timestamp] = None
    sync_session_id: str
    results: List[OperationResult] = Field(default_factory=list)
    conflicts: List[SyncConflictEnvelope] = Field(default_factory=list)
    errors: List[SyncErrorEnvelope] = Field(default_factory=list)
    statistics: SyncStatistics = Field(default_factory=SyncStatistics)


# ============================
# DELTA
# ============================
class SyncDeltaRequest(BaseModel):
    last_sync_timestamp: datetime
    entity_types: Optional[List[str]] = None
    limit: Optional[int] = None
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    sync_session_id: Optional[str] = None
    cursor: Optional[str] = None


class ModifiedEntity(BaseModel):
    entity_id: str
    entity_type: str
    entity_data: Dict[str, Any]
    last_modified: Optional[Timestamp] = None
    version: Optional[int] = None
    operation_type: str = "update"


class DeletedEntity(BaseModel):
    entity_id: str
    entity_type: str
    deleted_at: Optional[Timestamp] = None
    version: Optional[int] = None


class DeltaStatistics(BaseModel):
    by_entity_type: Dict[str, int] = Field(default_factory=dict)
    by_operation_type: Dict[str, int] = Field(default_factory=dict)
    oldest_modification: Optional[Timestamp] = None
    newest_modification: Optional[Timestamp] = None
    total_data_size_bytes: int = 0


class SyncDeltaResponse(BaseModel):
    modified_entities: List[ModifiedEntity] = Field(default_factory=list)
    deleted_entities: List[DeletedEntity] = Field(default_factory=list)
    total_modified: int = 0
    total_deleted: int = 0
    server_timestamp: Optional[Timestamp] = None
    next_sync_timestamp: Optional[Timestamp] = None
    next_cursor: Optional[str] = None
    has_more: bool = False
    sync_session_id: str
    statistics: DeltaStatistics = Field(default_factory=DeltaStatistics)


# ============================
# CONFLITS / STATUT / LOGS
# ============================
class SyncConflictView(BaseModel):
    id: int
    user_id: int
    entity_type: str
    entity_id: str
    conflict_type: str
    local_data: Optional[Any] = None
    server_data: Optional[Any] = None
    local_version: Optional[int] = None
    server_version: Optional[int] = None
    resolution_strategy: Optional[str] = None
    resolved_at: Optional[Timestamp] = None
    resolved_by: Optional[str] = None
    conflict_details: Optional[str] = None
    created_at: Optional[Timestamp] = None


class ConflictResolutionResponse(BaseModel):
    message: str
    conflict: SyncConflictView


class SyncStatusResponse(BaseModel):
    status: str = "active"
    version: str
    server_time: Timestamp
    entity_counts: Dict[str, int]
    pending_conflicts: int = 0
    pending_conflicts_by_type: Dict[str, int] = Field(default_factory=dict)


class SyncLogView(BaseModel):
    id: int
    sync_type: str
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    sync_session_id: Optional[str] = None
    operations_count: int
    success_count: int
    error_count: int
    conflict_count: int
    processing_time_ms: int
    timestamp: Timestamp
