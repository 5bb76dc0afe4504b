# app/services/sync_engine.py
"""
Moteur de synchronisation : traitement des opérations poussées par le mobile.

Chaque opération s'exécute dans sa propre transaction ; un batch n'est pas
une transaction et un échec isolé n'interrompt jamais le batch.
"""
import json
import logging
import time
import uuid
from collections import Counter
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.exceptions import SyncOperationError, BatchRejectedError, InvalidTimestampError
from app.core.sync_constants import (
    OperationType, OperationStatus, ConflictType, ConflictPriority,
    SyncErrorCode, SyncType,
)
from app.models.sync_conflict import SyncConflict
from app.schemas.sync import (
    SyncOperation, SyncBatchRequest, SyncBatchResponse, OperationResult,
    SyncConflictEnvelope, SyncErrorEnvelope, SyncStatistics,
)
from app.services.sync_adapters import EntityAdapter, get_adapter, client_updated_at
from app.services.sync_conflicts import detect_conflict, resolve_owner, ConflictRecorder
from app.services.sync_logger import SyncLogger
from app.services.sync_stores import EntityStore, ConflictStore
from app.utils.timestamps import utc_now, parse_timestamp

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class OperationOutcome:
    """Résultat d'une opération et ce qu'il faut pour construire les enveloppes"""

    def __init__(self, operation: SyncOperation, result: OperationResult):
        self.operation = operation
        self.result = result
        self.adapter: Optional[EntityAdapter] = None
        self.target_id: Optional[int] = None
        self.error_code: Optional[SyncErrorCode] = None
        self.conflict: Optional[SyncConflict] = None

    def succeed(self, server_id, message: str) -> None:
        self.result.status = OperationStatus.SUCCESS
        self.result.server_id = str(server_id) if server_id is not None else None
        self.result.message = message

    def fail(self, code: SyncErrorCode, message: str) -> None:
        self.error_code = code
        self.result.status = OperationStatus.FAILED
        self.result.message = message

    def mark_conflict(self, conflict: SyncConflict) -> None:
        self.conflict = conflict
        self.result.status = OperationStatus.CONFLICT
        self.result.message = conflict.conflict_details


# ============================
# PROCESSEUR D'OPÉRATION
# ============================
class OperationProcessor:
    """Applique une opération unique dans sa propre transaction"""

    def __init__(self, session_factory: sessionmaker, principal_user_id: Optional[int] = None):
        self.session_factory = session_factory
        self.principal_user_id = principal_user_id
        self.handlers = {
            OperationType.CREATE.value: self._create,
            OperationType.UPDATE.value: self._update,
            OperationType.DELETE.value: self._delete,
        }

    def process(self, operation: SyncOperation) -> OperationOutcome:
        result = OperationResult(
            entity_id=operation.entity_id,
            local_id=operation.local_id,
            entity_type=operation.entity_type,
            operation_type=operation.operation_type,
            timestamp=utc_now(),
        )
        outcome = OperationOutcome(operation, result)

        try:
            self._check_envelope(operation)
            adapter = get_adapter(operation.entity_type)
            if adapter is None:
                raise SyncOperationError(
                    SyncErrorCode.UNSUPPORTED_ENTITY,
                    f"Type d'entité non supporté: {operation.entity_type}"
                )
            handler = self.handlers.get(operation.operation_type)
            if handler is None:
                raise SyncOperationError(
                    SyncErrorCode.UNSUPPORTED_ENTITY,
                    f"Type d'opération non supporté: {operation.operation_type}"
                )
            outcome.adapter = adapter

            with self.session_factory() as db, db.begin():
                handler(db, adapter, operation, outcome)

        except SyncOperationError as e:
            logger.warning(
                f"Opération {operation.operation_type} {operation.entity_type} "
                f"{operation.entity_id or operation.local_id} en échec: {e.code.value} - {e.message}"
            )
            outcome.fail(e.code, e.message)
        except Exception as e:
            logger.exception(
                f"Erreur interne sur {operation.operation_type} {operation.entity_type} "
                f"{operation.entity_id or operation.local_id}"
            )
            outcome.fail(SyncErrorCode.INTERNAL, str(e) or e.__class__.__name__)

        return outcome

    @staticmethod
    def _check_envelope(operation: SyncOperation) -> None:
        """
        Contrôle les champs de l'opération que le schéma laisse passer.

        Raises:
            SyncOperationError: INVALID_PAYLOAD
        """
        if not operation.entity_type or not operation.operation_type:
            raise SyncOperationError(
                SyncErrorCode.INVALID_PAYLOAD, "entity_type et operation_type sont obligatoires"
            )
        if operation.entity_data is not None and not isinstance(operation.entity_data, dict):
            raise SyncOperationError(
                SyncErrorCode.INVALID_PAYLOAD,
                f"entity_data doit être un objet: {operation.entity_data!r}"
            )
        # Horodatage mobile : ISO-8601 ou epoch numérique
        if operation.timestamp is not None and not _is_number(operation.timestamp):
            try:
                parse_timestamp(operation.timestamp)
            except InvalidTimestampError:
                raise SyncOperationError(
                    SyncErrorCode.INVALID_PAYLOAD, f"timestamp invalide: {operation.timestamp!r}"
                )
        for name in ("priority", "retry_count"):
            value = getattr(operation, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise SyncOperationError(
                    SyncErrorCode.INVALID_PAYLOAD, f"{name} doit être un entier: {value!r}"
                )

    # ----- create -----
    def _create(self, db, adapter: EntityAdapter, operation: SyncOperation, outcome: OperationOutcome):
        entity = adapter.from_map(operation.entity_data)
        now = utc_now()
        entity.created_at = now
        adapter.set_last_modified(entity, now)

        EntityStore(db).save(adapter, entity)
        outcome.target_id = entity.id
        outcome.succeed(entity.id, f"{adapter.entity_type.value} créé")

    # ----- update -----
    def _update(self, db, adapter: EntityAdapter, operation: SyncOperation, outcome: OperationOutcome):
        entity_id = adapter.parse_id(operation.entity_id)
        outcome.target_id = entity_id
        client_modified = client_updated_at(operation.entity_data)

        store = EntityStore(db)
        entity = store.find_by_id(adapter, entity_id)
        if entity is None:
            raise SyncOperationError(
                SyncErrorCode.NOT_FOUND,
                f"{adapter.entity_type.value} {entity_id} introuvable"
            )

        conflict_type = detect_conflict(
            OperationType.UPDATE.value, adapter.get_last_modified(entity), client_modified
        )
        if conflict_type is not None:
            self._record_conflict(db, adapter, operation, conflict_type, entity, client_modified, outcome)
            return

        adapter.apply_map(entity, operation.entity_data)
        adapter.set_last_modified(entity, utc_now())
        store.save(adapter, entity)
        outcome.succeed(entity.id, f"{adapter.entity_type.value} mis à jour")

    # ----- delete -----
    def _delete(self, db, adapter: EntityAdapter, operation: SyncOperation, outcome: OperationOutcome):
        entity_id = adapter.parse_id(operation.entity_id)
        outcome.target_id = entity_id

        store = EntityStore(db)
        entity = store.find_by_id(adapter, entity_id)
        if entity is None:
            # Suppression idempotente
            outcome.succeed(operation.entity_id, f"{adapter.entity_type.value} déjà supprimé")
            return

        client_modified = client_updated_at(operation.entity_data)

        conflict_type = detect_conflict(
            OperationType.DELETE.value, adapter.get_last_modified(entity), client_modified
        )
        if conflict_type is not None:
            self._record_conflict(db, adapter, operation, conflict_type, entity, client_modified, outcome)
            return

        store.delete_by_id(adapter, entity_id)
        outcome.succeed(entity_id, f"{adapter.entity_type.value} supprimé")

    def _record_conflict(self, db, adapter, operation, conflict_type, entity, client_modified, outcome):
        recorder = ConflictRecorder(ConflictStore(db))
        conflict = recorder.record(
            adapter,
            entity_id=str(entity.id),
            conflict_type=conflict_type,
            local_data=operation.entity_data,
            server_entity=entity,
            client_modified=client_modified,
            owner_id=resolve_owner(self.principal_user_id, operation.entity_data),
        )
        outcome.mark_conflict(conflict)


# ============================
# COORDINATEUR DE BATCH
# ============================
class BatchCoordinator:
    """Traite un batch dans l'ordre reçu et construit la réponse agrégée"""

    def __init__(
        self,
        session_factory: sessionmaker,
        sync_logger: Optional[SyncLogger] = None,
        principal_user_id: Optional[int] = None,
        max_batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.sync_logger = sync_logger or SyncLogger(session_factory)
        self.processor = OperationProcessor(session_factory, principal_user_id)
        self.max_batch_size = max_batch_size or settings.SYNC_MAX_BATCH_SIZE

    def validate(self, request: SyncBatchRequest) -> None:
        """
        Raises:
            BatchRejectedError: batch vide ou trop volumineux
        """
        count = len(request.operations)
        if count == 0:
            raise BatchRejectedError(SyncErrorCode.EMPTY_BATCH, "Aucune opération à synchroniser")
        if count > self.max_batch_size:
            raise BatchRejectedError(
                SyncErrorCode.BATCH_TOO_LARGE,
                f"Batch trop volumineux: {count} opérations (maximum {self.max_batch_size})"
            )

    def process(self, request: SyncBatchRequest) -> SyncBatchResponse:
        self.validate(request)

        sync_session_id = str(uuid.uuid4())
        started = time.perf_counter()
        response = SyncBatchResponse(sync_session_id=sync_session_id)
        status_counts: Counter = Counter()

        logger.info(
            f"Batch {sync_session_id}: {len(request.operations)} opérations "
            f"(appareil={request.device_id}, version={request.app_version})"
        )

        try:
            for operation in request.operations:
                outcome = self.processor.process(operation)
                response.results.append(outcome.result)
                status_counts[outcome.result.status] += 1

                if outcome.result.status == OperationStatus.CONFLICT:
                    response.conflicts.append(self._conflict_envelope(outcome))
                elif outcome.result.status == OperationStatus.FAILED:
                    response.errors.append(self._error_envelope(outcome))
        finally:
            processing_time_ms = int((time.perf_counter() - started) * 1000)
            response.success_count = status_counts[OperationStatus.SUCCESS]
            response.error_count = status_counts[OperationStatus.FAILED]
            response.conflict_count = status_counts[OperationStatus.CONFLICT]
            response.skipped_count = status_counts[OperationStatus.SKIPPED]
            response.total_processed = sum(status_counts.values())
            response.processing_time_ms = processing_time_ms

            self.sync_logger.log(
                SyncType.BATCH,
                device_id=request.device_id,
                app_version=request.app_version,
                sync_session_id=sync_session_id,
                operations_count=len(request.operations),
                success_count=response.success_count,
                error_count=response.error_count,
                conflict_count=response.conflict_count,
                processing_time_ms=processing_time_ms,
            )

        response.statistics = self._statistics(request.operations, response)
        response.server_timestamp = utc_now()

        logger.info(
            f"Batch {sync_session_id} terminé en {processing_time_ms} ms: "
            f"{response.success_count} succès, {response.error_count} erreurs, "
            f"{response.conflict_count} conflits"
        )
        return response

    # ----- enveloppes -----
    def _conflict_envelope(self, outcome: OperationOutcome) -> SyncConflictEnvelope:
        conflict = outcome.conflict
        return SyncConflictEnvelope(
            conflict_id=str(conflict.id),
            entity_id=conflict.entity_id,
            entity_type=conflict.entity_type,
            conflict_type=ConflictType(conflict.conflict_type),
            local_data=outcome.operation.entity_data,
            server_data=self._reload_snapshot(outcome.adapter, outcome.target_id),
            priority=ConflictPriority.MEDIUM,
            timestamp=conflict.created_at,
            message=conflict.conflict_details,
        )

    def _reload_snapshot(self, adapter: Optional[EntityAdapter], entity_id: Optional[int]):
        """État serveur actuel de l'entité, None si le rechargement échoue"""
        if adapter is None or entity_id is None:
            return None
        try:
            with self.session_factory() as db:
                entity = EntityStore(db).find_by_id(adapter, entity_id)
                return adapter.to_map(entity) if entity is not None else None
        except Exception:
            logger.warning(
                f"Rechargement de {adapter.entity_type.value} {entity_id} impossible pour le conflit",
                exc_info=True,
            )
            return None

    def _error_envelope(self, outcome: OperationOutcome) -> SyncErrorEnvelope:
        operation = outcome.operation
        return SyncErrorEnvelope(
            entity_id=operation.entity_id,
            local_id=operation.local_id,
            entity_type=operation.entity_type,
            operation_type=operation.operation_type,
            error_code=outcome.error_code or SyncErrorCode.INTERNAL,
            error_message=outcome.result.message,
            timestamp=outcome.result.timestamp,
        )

    @staticmethod
    def _statistics(operations: List[SyncOperation], response: SyncBatchResponse) -> SyncStatistics:
        by_entity_type = Counter(op.entity_type for op in operations if op.entity_type)
        by_operation_type = Counter(op.operation_type for op in operations if op.operation_type)
        data_size = sum(
            len(json.dumps(op.entity_data, default=str).encode("utf-8"))
            for op in operations if op.entity_data
        )
        return SyncStatistics(
            by_entity_type=dict(by_entity_type),
            by_operation_type=dict(by_operation_type),
            average_processing_time_ms=response.processing_time_ms / max(response.total_processed, 1),
            total_data_size_bytes=data_size,
        )
