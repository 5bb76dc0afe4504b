# app/api/deps.py

from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.orm import sessionmaker
from typing import Optional

from app.db.session import get_session_factory
from app.core.security import Principal, AuthorizationError, authenticate_header
from app.services.sync_service import SyncService


# ======================================================
# AUTHENTIFICATION
# ======================================================

def get_principal(
    authorization: Optional[str] = Header(None)
) -> Optional[Principal]:
    """Applique la politique du header Authorization et retourne le principal éventuel"""
    try:
        return authenticate_header(authorization)
    except AuthorizationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


# ======================================================
# SERVICES
# ======================================================

def get_sync_service(
    session_factory: sessionmaker = Depends(get_session_factory)
) -> SyncService:
    return SyncService(session_factory)


# ======================================================
# EXPORTS
# ======================================================

__all__ = [
    "get_session_factory",
    "get_principal",
    "get_sync_service",
]
