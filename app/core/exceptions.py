# app/core/exceptions.py
"""
Exceptions du moteur de synchronisation.

Les erreurs d'opération sont récupérées dans le résultat de l'opération,
les autres sont converties en réponse HTTP par le routeur.
"""
from app.core.sync_constants import SyncErrorCode


class SyncError(Exception):
    """Erreur de base de la synchronisation"""


class SyncOperationError(SyncError):
    """Échec d'une opération individuelle (jamais propagé hors du batch)"""

    def __init__(self, code: SyncErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class BatchRejectedError(SyncError):
    """Batch rejeté avant tout traitement (vide ou trop volumineux)"""

    def __init__(self, code: SyncErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class InvalidTimestampError(ValueError):
    """Timestamp ISO-8601 illisible"""


class InvalidCursorError(ValueError):
    """Curseur de pagination delta illisible"""


class ConflictNotFoundError(SyncError):
    pass


class ConflictAlreadyResolvedError(SyncError):
    pass
