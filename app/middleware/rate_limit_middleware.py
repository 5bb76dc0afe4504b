# app/middleware/rate_limit_middleware.py
import time
import logging
from collections import defaultdict
from typing import Dict, List
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

EXEMPT_PREFIXES = ("/docs", "/redoc", "/openapi.json")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fenêtre glissante par adresse IP du client"""

    def __init__(self, app, request_limit: int = 100, window_seconds: int = 60):
        super().__init__(app)
        self.request_limit = request_limit
        self.window_seconds = window_seconds
        self.clients: Dict[str, List[float]] = defaultdict(list)

    def _prune(self, now: float) -> None:
        """Retire les requêtes hors fenêtre et les clients inactifs"""
        for ip in list(self.clients):
            recent = [t for t in self.clients[ip] if now - t < self.window_seconds]
            if recent:
                self.clients[ip] = recent
            else:
                del self.clients[ip]

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        # X-Device-ID est choisi par le client : seule l'IP sert de clé
        ip = request.client.host if request.client else "unknown"
        now = time.time()
        self._prune(now)

        timestamps = self.clients[ip]
        if len(timestamps) >= self.request_limit:
            retry_after = max(1, int(self.window_seconds - (now - timestamps[0])))
            logger.warning(f"Limite de requêtes atteinte pour {ip} sur {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Trop de requêtes. Veuillez réessayer plus tard.",
                    "retry_after": retry_after
                },
                headers={"Retry-After": str(retry_after)}
            )

        timestamps.append(now)
        return await call_next(request)
