# app/services/sync_conflicts.py
"""
Détection, enregistrement et résolution des conflits de synchronisation.

La concurrence est optimiste : la date de modification envoyée par le
mobile est comparée à celle du serveur, à la milliseconde près. Un conflit
détecté n'entraîne jamais de modification de l'entité.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from app.core.exceptions import ConflictNotFoundError, ConflictAlreadyResolvedError
from app.core.sync_constants import ConflictType, OperationType, ResolutionStrategy
from app.models.sync_conflict import SyncConflict
from app.services.sync_stores import ConflictStore
from app.utils.timestamps import utc_now, to_epoch_millis, format_timestamp

logger = logging.getLogger(__name__)


# ============================
# DÉTECTION
# ============================
def detect_conflict(
    operation_type: str,
    server_modified: Optional[datetime],
    client_modified: Optional[datetime],
) -> Optional[ConflictType]:
    """
    Compare la version connue du client avec celle du serveur.

    - update : toute différence donne VERSION_MISMATCH
    - delete : un serveur modifié après le client donne DELETE_UPDATE
    - sans date client, l'écriture passe (dernier écrivain gagnant)
    """
    if client_modified is None or server_modified is None:
        return None

    if operation_type == OperationType.UPDATE.value:
        if server_modified != client_modified:
            return ConflictType.VERSION_MISMATCH
    elif operation_type == OperationType.DELETE.value:
        if server_modified > client_modified:
            return ConflictType.DELETE_UPDATE
    return None


def resolve_owner(principal_user_id: Optional[int], entity_data: Optional[Dict[str, Any]]) -> int:
    """Propriétaire du conflit : utilisateur authentifié, sinon user_id du payload, sinon 0"""
    if principal_user_id is not None:
        return principal_user_id

    raw = None
    if entity_data:
        raw = entity_data.get("user_id", entity_data.get("userId"))
    if isinstance(raw, bool) or raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def encode_snapshot(data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Encodage JSON stable (clés triées) des instantanés"""
    if data is None:
        return None
    return json.dumps(data, sort_keys=True, default=str, ensure_ascii=False)


def decode_snapshot(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


# ============================
# ENREGISTREMENT
# ============================
class ConflictRecorder:
    """Écrit la ligne de conflit dans la transaction de l'opération"""

    def __init__(self, conflict_store: ConflictStore):
        self.conflict_store = conflict_store

    def record(
        self,
        adapter,
        entity_id: str,
        conflict_type: ConflictType,
        local_data: Optional[Dict[str, Any]],
        server_entity,
        client_modified: Optional[datetime],
        owner_id: int,
    ) -> SyncConflict:
        server_modified = adapter.get_last_modified(server_entity) if server_entity is not None else None
        server_data = adapter.to_map(server_entity) if server_entity is not None else None

        conflict = SyncConflict(
            user_id=owner_id,
            entity_type=adapter.entity_type.value,
            entity_id=entity_id,
            conflict_type=conflict_type.value,
            local_data=encode_snapshot(local_data or {}),
            server_data=encode_snapshot(server_data),
            local_version=to_epoch_millis(client_modified),
            server_version=to_epoch_millis(server_modified),
            conflict_details=(
                f"{conflict_type.value} sur {adapter.entity_type.value} {entity_id} : "
                f"serveur modifié le {format_timestamp(server_modified)}, "
                f"client basé sur {format_timestamp(client_modified)}"
            ),
            created_at=utc_now(),
        )
        self.conflict_store.save(conflict)

        logger.info(
            f"Conflit {conflict_type.value} enregistré pour {adapter.entity_type.value} {entity_id} "
            f"(serveur={format_timestamp(server_modified)}, client={format_timestamp(client_modified)})"
        )
        return conflict


# ============================
# RÉSOLUTION
# ============================
def parse_strategy(raw: Optional[str]) -> ResolutionStrategy:
    """
    Raises:
        ValueError: stratégie inconnue
    """
    if not raw or not raw.strip():
        raise ValueError("Stratégie de résolution requise")
    try:
        return ResolutionStrategy(raw.strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in ResolutionStrategy)
        raise ValueError(f"Stratégie de résolution invalide: {raw!r} (attendu : {allowed})")


class ConflictResolver:
    """
    Liste les conflits en attente et clôt un conflit.
    La résolution ne modifie pas l'entité visée : elle ferme l'audit.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_unresolved(self, user_id: Optional[int] = None) -> List[SyncConflict]:
        with self.session_factory() as db:
            return ConflictStore(db).find_unresolved(user_id)

    def resolve(self, conflict_id: int, strategy: ResolutionStrategy, resolved_by: str) -> SyncConflict:
        with self.session_factory() as db, db.begin():
            conflict = ConflictStore(db).find_by_id(conflict_id)
            if conflict is None:
                raise ConflictNotFoundError(f"Conflit {conflict_id} introuvable")
            if not conflict.is_pending:
                raise ConflictAlreadyResolvedError(f"Conflit {conflict_id} déjà résolu")

            conflict.resolution_strategy = strategy.value
            conflict.resolved_at = utc_now()
            conflict.resolved_by = resolved_by

        logger.info(f"Conflit {conflict_id} résolu ({strategy.value}) par {resolved_by}")
        return conflict
