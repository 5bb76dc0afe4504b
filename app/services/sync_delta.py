# app/services/sync_delta.py
"""
Production du delta : entités modifiées côté serveur depuis un watermark.

Les candidats sont ordonnés globalement par (updated_at, rang du type, id).
La page contient les `limit` premiers ; quand il en reste, un curseur
opaque permet de reprendre exactement après la dernière entité livrée.
Le watermark seul progresse toujours : une page entièrement contenue
dans une milliseconde est étendue au reste de cette milliseconde.
"""
import base64
import binascii
import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.exceptions import InvalidCursorError, InvalidTimestampError
from app.core.sync_constants import ENTITY_TYPE_ORDER, SyncType
from app.schemas.sync import (
    SyncDeltaRequest, SyncDeltaResponse, ModifiedEntity, DeltaStatistics,
)
from app.services.sync_adapters import get_adapter
from app.services.sync_logger import SyncLogger
from app.services.sync_stores import EntityStore
from app.utils.timestamps import (
    utc_now, normalize, parse_timestamp, format_timestamp, to_epoch_millis, ONE_MILLISECOND,
)

logger = logging.getLogger(__name__)

TYPE_RANK = {entity_type.value: rank for rank, entity_type in enumerate(ENTITY_TYPE_ORDER)}


# ============================
# CURSEUR
# ============================
def encode_cursor(updated_at: datetime, entity_type: str, entity_id: int) -> str:
    payload = json.dumps(
        {"u": format_timestamp(updated_at), "t": entity_type, "i": entity_id},
        separators=(",", ":"),
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> Tuple[datetime, str, int]:
    """
    Raises:
        InvalidCursorError: jeton illisible ou incohérent
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        updated_at = parse_timestamp(data["u"])
        entity_type = data["t"]
        entity_id = data["i"]
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, InvalidTimestampError):
        raise InvalidCursorError(f"Curseur invalide: {token!r}")

    if entity_type not in TYPE_RANK or isinstance(entity_id, bool) or not isinstance(entity_id, int):
        raise InvalidCursorError(f"Curseur invalide: {token!r}")
    return updated_at, entity_type, entity_id


def parse_entity_types(raw: Optional[Iterable[str]]) -> List[str]:
    """
    Filtre de types : valeurs répétées et/ou séparées par des virgules.
    Retourne les types dans l'ordre d'itération ; vide = tous.

    Raises:
        ValueError: type inconnu
    """
    requested = set()
    for value in raw or []:
        for part in value.split(","):
            name = part.strip().lower()
            if not name:
                continue
            if name not in TYPE_RANK:
                raise ValueError(f"Type d'entité inconnu: {part.strip()}")
            requested.add(name)

    if not requested:
        return [entity_type.value for entity_type in ENTITY_TYPE_ORDER]
    return [entity_type.value for entity_type in ENTITY_TYPE_ORDER if entity_type.value in requested]


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        limit = settings.SYNC_DELTA_DEFAULT_LIMIT
    return min(max(1, limit), settings.SYNC_DELTA_MAX_LIMIT)


# ============================
# PRODUCTEUR
# ============================
class DeltaProducer:

    def __init__(self, session_factory: sessionmaker, sync_logger: Optional[SyncLogger] = None):
        self.session_factory = session_factory
        self.sync_logger = sync_logger or SyncLogger(session_factory)

    def produce(self, request: SyncDeltaRequest) -> SyncDeltaResponse:
        started = time.perf_counter()
        since = normalize(request.last_sync_timestamp)
        entity_types = parse_entity_types(request.entity_types)
        limit = clamp_limit(request.limit)
        resume = decode_cursor(request.cursor) if request.cursor else None
        sync_session_id = request.sync_session_id or str(uuid.uuid4())

        with self.session_factory() as db:
            store = EntityStore(db)
            # limit + 1 par type suffit pour savoir s'il reste des candidats
            candidates = self._candidates(store, entity_types, since, resume, limit + 1)
            page = candidates[:limit]
            has_more = len(candidates) > limit
            watermark = None

            if has_more:
                last_at = page[-1][0]
                if candidates[limit][0] > last_at:
                    watermark = last_at
                elif last_at - ONE_MILLISECOND > since:
                    # Page coupée dans une milliseconde : elle sera rejouée
                    watermark = last_at - ONE_MILLISECOND
                else:
                    # Toute la page tient dans une milliseconde : on la livre en entier
                    page = self._candidates(
                        store, entity_types, since, resume, None, before=last_at + ONE_MILLISECOND
                    )
                    has_more = any(
                        store.has_updated_from(get_adapter(entity_type), last_at + ONE_MILLISECOND)
                        for entity_type in entity_types
                    )
                    watermark = last_at

            # Émission groupée par type dans l'ordre d'itération
            modified = [
                ModifiedEntity(
                    entity_id=str(entity_id),
                    entity_type=adapter.entity_type.value,
                    entity_data=adapter.to_map(entity),
                    last_modified=updated_at,
                    version=to_epoch_millis(updated_at),
                )
                for updated_at, _, entity_id, adapter, entity in sorted(page, key=lambda c: (c[1], c[0], c[2]))
            ]

        now = utc_now()
        response = SyncDeltaResponse(
            modified_entities=modified,
            deleted_entities=[],
            total_modified=len(modified),
            total_deleted=0,
            server_timestamp=now,
            has_more=has_more,
            sync_session_id=sync_session_id,
            statistics=self._statistics(entity_types, modified),
        )

        if has_more:
            last_updated_at, _, last_id, last_adapter, _ = page[-1]
            response.next_cursor = encode_cursor(last_updated_at, last_adapter.entity_type.value, last_id)
            response.next_sync_timestamp = min(now, watermark)
        else:
            response.next_sync_timestamp = now

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        self.sync_logger.log(
            SyncType.DELTA,
            device_id=request.device_id,
            app_version=request.app_version,
            sync_session_id=sync_session_id,
            operations_count=response.total_modified,
            success_count=response.total_modified,
            error_count=0,
            conflict_count=0,
            processing_time_ms=processing_time_ms,
        )

        logger.info(
            f"Delta {sync_session_id} depuis {format_timestamp(since)}: "
            f"{response.total_modified} entités, has_more={has_more}"
        )
        return response

    def _candidates(self, store, entity_types, since, resume, limit, before=None):
        """Candidats de tous les types triés par (updated_at, rang du type, id)"""
        candidates = []
        for entity_type in entity_types:
            adapter = get_adapter(entity_type)
            query_since, after_key = self._resume_window(since, entity_type, resume)
            for entity in store.find_updated_after(adapter, query_since, after_key, limit, before):
                candidates.append(
                    (adapter.get_last_modified(entity), TYPE_RANK[entity_type], entity.id, adapter, entity)
                )
        candidates.sort(key=lambda c: (c[0], c[1], c[2]))
        return candidates

    @staticmethod
    def _resume_window(since: datetime, entity_type: str, resume):
        """Fenêtre de requête d'un type pour reprendre après la clé du curseur"""
        if resume is None:
            return since, None
        resume_at, resume_type, resume_id = resume
        rank, resume_rank = TYPE_RANK[entity_type], TYPE_RANK[resume_type]
        if rank == resume_rank:
            return since, (resume_at, resume_id)
        if rank > resume_rank:
            # Les ids commencent à 1 : toutes les entités à resume_at restent à livrer
            return since, (resume_at, 0)
        return max(since, resume_at), None

    @staticmethod
    def _statistics(entity_types: List[str], modified: List[ModifiedEntity]) -> DeltaStatistics:
        by_type = Counter(item.entity_type for item in modified)
        dates = [item.last_modified for item in modified if item.last_modified is not None]
        data_size = len(
            json.dumps([item.entity_data for item in modified], default=str).encode("utf-8")
        ) if modified else 0
        return DeltaStatistics(
            by_entity_type={entity_type: by_type.get(entity_type, 0) for entity_type in entity_types},
            by_operation_type={"update": len(modified)} if modified else {},
            oldest_modification=min(dates) if dates else None,
            newest_modification=max(dates) if dates else None,
            total_data_size_bytes=data_size,
        )
