# app/core/sync_constants.py
from enum import Enum


class EntityType(str, Enum):
    PRODUCT = "product"
    SALE = "sale"
    STOCK_MOVEMENT = "stock_movement"


# Ordre d'itération des types pour le delta
ENTITY_TYPE_ORDER = [EntityType.PRODUCT, EntityType.SALE, EntityType.STOCK_MOVEMENT]


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CONFLICT = "conflict"
    SKIPPED = "skipped"


class ConflictType(str, Enum):
    VERSION_MISMATCH = "VERSION_MISMATCH"
    UPDATE_DELETE = "UPDATE_DELETE"
    DELETE_UPDATE = "DELETE_UPDATE"
    CREATE_CONFLICT = "CREATE_CONFLICT"


class ConflictPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SyncErrorCode(str, Enum):
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    UNSUPPORTED_ENTITY = "UNSUPPORTED_ENTITY"
    NOT_FOUND = "NOT_FOUND"
    BATCH_TOO_LARGE = "BATCH_TOO_LARGE"
    EMPTY_BATCH = "EMPTY_BATCH"
    INTERNAL = "INTERNAL"


class ResolutionStrategy(str, Enum):
    SERVER_WINS = "SERVER_WINS"
    CLIENT_WINS = "CLIENT_WINS"
    MANUAL = "MANUAL"
    MERGED = "MERGED"


class SyncType(str, Enum):
    BATCH = "BATCH"
    DELTA = "DELTA"
