# app/core/security.py
"""
Politique du header Authorization pour la synchronisation.

L'émission et la validation complète des tokens relèvent du service
d'authentification ; ici on vérifie le format Bearer et on lit les claims
pour identifier le propriétaire des conflits.
"""
import logging
from typing import Optional, Dict, Any

from jose import jwt, JWTError

from app.core.config import settings

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class AuthorizationError(Exception):
    """Header Authorization refusé (401)"""


class Principal:
    """Identité lue dans le token porteur"""

    def __init__(self, user_id: Optional[int], name: Optional[str], claims: Dict[str, Any]):
        self.user_id = user_id
        self.name = name
        self.claims = claims

    def __repr__(self):
        return f"<Principal {self.user_id} {self.name}>"


def read_claims(token: str) -> Dict[str, Any]:
    """
    Claims du token. La signature n'est vérifiée que si SYNC_VERIFY_TOKENS.

    Raises:
        JWTError: token illisible ou signature invalide
    """
    if settings.SYNC_VERIFY_TOKENS:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return jwt.get_unverified_claims(token)


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    sub = claims.get("sub")
    user_id = None
    if sub is not None and not isinstance(sub, bool):
        try:
            user_id = int(sub)
        except (TypeError, ValueError):
            user_id = None

    name = claims.get("username") or claims.get("name") or claims.get("email")
    if name is None and sub is not None:
        name = str(sub)
    return Principal(user_id=user_id, name=name, claims=claims)


def authenticate_header(authorization: Optional[str]) -> Optional[Principal]:
    """
    Applique la politique du header :
    - absent : accepté sauf si SYNC_REQUIRE_AUTH
    - présent : doit commencer par "Bearer "
    - token illisible : principal inconnu, refusé si SYNC_VERIFY_TOKENS

    Raises:
        AuthorizationError: header refusé
    """
    if authorization is None:
        if settings.SYNC_REQUIRE_AUTH:
            raise AuthorizationError("Header Authorization requis")
        return None

    if not authorization.startswith(BEARER_PREFIX):
        raise AuthorizationError("Header Authorization invalide (Bearer attendu)")

    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthorizationError("Token Bearer manquant")

    try:
        return principal_from_claims(read_claims(token))
    except JWTError as e:
        if settings.SYNC_VERIFY_TOKENS:
            raise AuthorizationError("Token invalide ou expiré") from e
        logger.debug(f"Token non décodable, requête traitée sans principal: {e}")
        return None
