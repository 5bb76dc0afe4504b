# app/services/sync_stores.py
"""
Accès aux données de la synchronisation.

Les stores travaillent sur la session fournie par l'appelant et ne
valident jamais : la transaction appartient à l'opération en cours.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, and_, or_
from sqlalchemy.orm import Session

from app.models.sync_conflict import SyncConflict
from app.models.sync_log import SyncLog


class EntityStore:
    """Lecture/écriture des entités synchronisées, quel que soit leur type"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, adapter, entity_id: int):
        model = adapter.model
        return self.db.query(model).filter(model.id == entity_id).first()

    def save(self, adapter, entity):
        """Persiste l'entité et attribue son id si elle est nouvelle"""
        self.db.add(entity)
        self.db.flush()
        return entity

    def delete_by_id(self, adapter, entity_id: int) -> int:
        model = adapter.model
        return self.db.query(model).filter(model.id == entity_id).delete(synchronize_session="fetch")

    def find_updated_after(
        self,
        adapter,
        since: datetime,
        after_key: Optional[Tuple[datetime, int]] = None,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
    ) -> List:
        """
        Entités dont updated_at > since, triées par (updated_at, id).

        after_key permet de reprendre strictement après un couple
        (updated_at, id) déjà livré ; before borne la fenêtre (exclu).
        """
        model = adapter.model
        query = self.db.query(model).filter(model.updated_at > since)
        if before is not None:
            query = query.filter(model.updated_at < before)

        if after_key is not None:
            resume_at, resume_id = after_key
            query = query.filter(
                or_(
                    model.updated_at > resume_at,
                    and_(model.updated_at == resume_at, model.id > resume_id),
                )
            )

        query = query.order_by(model.updated_at.asc(), model.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def has_updated_from(self, adapter, start: datetime) -> bool:
        """Vrai si une entité a updated_at >= start"""
        model = adapter.model
        return self.db.query(model.id).filter(model.updated_at >= start).first() is not None

    def count(self, adapter) -> int:
        return self.db.query(func.count(adapter.model.id)).scalar() or 0


class ConflictStore:
    """Conflits persistés en attente de résolution"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, conflict: SyncConflict) -> SyncConflict:
        self.db.add(conflict)
        self.db.flush()
        return conflict

    def find_by_id(self, conflict_id: int) -> Optional[SyncConflict]:
        return self.db.query(SyncConflict).filter(SyncConflict.id == conflict_id).first()

    def find_unresolved(self, user_id: Optional[int] = None) -> List[SyncConflict]:
        query = self.db.query(SyncConflict).filter(SyncConflict.resolved_at.is_(None))
        if user_id is not None:
            query = query.filter(SyncConflict.user_id == user_id)
        return query.order_by(SyncConflict.created_at.asc(), SyncConflict.id.asc()).all()

    def count_unresolved_by_type(self) -> Dict[str, int]:
        rows = (
            self.db.query(SyncConflict.entity_type, func.count(SyncConflict.id))
            .filter(SyncConflict.resolved_at.is_(None))
            .group_by(SyncConflict.entity_type)
            .all()
        )
        return {entity_type: count for entity_type, count in rows}


class SyncLogStore:
    """Journal d'audit (ajout seul)"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, log: SyncLog) -> SyncLog:
        self.db.add(log)
        self.db.flush()
        return log

    def recent(
        self,
        limit: int,
        sync_type: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> List[SyncLog]:
        query = self.db.query(SyncLog)
        if sync_type:
            query = query.filter(SyncLog.sync_type == sync_type)
        if device_id:
            query = query.filter(SyncLog.device_id == device_id)
        return query.order_by(SyncLog.timestamp.desc(), SyncLog.id.desc()).limit(limit).all()
