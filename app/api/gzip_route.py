# app/api/gzip_route.py
import gzip
import logging
import zlib
from typing import Callable

from fastapi import Request, Response, HTTPException, status
from fastapi.routing import APIRoute

logger = logging.getLogger(__name__)


class GzipRequest(Request):
    """Requête dont le corps est décompressé si Content-Encoding: gzip"""

    async def body(self) -> bytes:
        if not hasattr(self, "_body"):
            body = await super().body()
            if "gzip" in self.headers.getlist("Content-Encoding"):
                try:
                    body = gzip.decompress(body)
                except (OSError, EOFError, zlib.error) as e:
                    logger.warning(f"Corps gzip illisible sur {self.url.path}: {e}")
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail="Corps de requête gzip invalide"
                    )
            self._body = body
        return self._body


class GzipRoute(APIRoute):
    """Route FastAPI acceptant les corps compressés envoyés par le mobile"""

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def custom_route_handler(request: Request) -> Response:
            request = GzipRequest(request.scope, request.receive)
            return await original_route_handler(request)

        return custom_route_handler
