# app/services/sync_adapters.py
"""
Adaptateurs d'entités pour la synchronisation.

Chaque adaptateur traduit entre le dictionnaire neutre transporté par le
mobile (entity_data) et le modèle SQLAlchemy d'un type d'entité.
Les clés canoniques sont en snake_case ; les variantes camelCase et les
anciennes clés du mobile (price, amount) sont acceptées en entrée.
"""
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type

from app.core.exceptions import SyncOperationError, InvalidTimestampError
from app.core.sync_constants import EntityType, SyncErrorCode
from app.models.product import Product
from app.models.sale import Sale
from app.models.stock_movement import StockMovement
from app.utils.timestamps import parse_timestamp, format_timestamp, normalize, utc_now

# Clés qui ne sont jamais copiées depuis le payload client
PROTECTED_KEYS = {"id", "created_at", "updated_at"}

# Variantes acceptées pour la date de modification du client
UPDATED_AT_KEYS = ("updated_at", "updatedAt", "lastModified", "last_modified")


def _invalid(message: str) -> SyncOperationError:
    return SyncOperationError(SyncErrorCode.INVALID_PAYLOAD, message)


# ============================
# CONVERSIONS DE CHAMPS
# ============================
def to_decimal(key: str, value: Any) -> Decimal:
    """Convertit sans passer par un flottant binaire"""
    if isinstance(value, bool):
        raise _invalid(f"Valeur décimale invalide pour '{key}': {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # repr() donne la représentation décimale la plus courte (9.99 -> "9.99")
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise _invalid(f"Valeur décimale invalide pour '{key}': {value!r}")
    else:
        raise _invalid(f"Valeur décimale invalide pour '{key}': {value!r}")

    if not result.is_finite():
        raise _invalid(f"Valeur décimale invalide pour '{key}': {value!r}")
    return result


def to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise _invalid(f"Entier invalide pour '{key}': {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise _invalid(f"Entier invalide pour '{key}': {value!r}")


def to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise _invalid(f"Booléen invalide pour '{key}': {value!r}")


def to_str(key: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    raise _invalid(f"Texte invalide pour '{key}': {value!r}")


def to_datetime(key: str, value: Any) -> datetime:
    try:
        return parse_timestamp(value)
    except InvalidTimestampError:
        raise _invalid(f"Date invalide pour '{key}': {value!r}")


CONVERTERS = {
    "str": to_str,
    "decimal": to_decimal,
    "int": to_int,
    "bool": to_bool,
    "datetime": to_datetime,
}


def _dump(kind: str, value: Any) -> Any:
    """Sérialisation vers le format du fil (décimaux en chaînes)"""
    if value is None:
        return None
    if kind == "decimal":
        return str(value)
    if kind == "datetime":
        return format_timestamp(value)
    return value


def client_updated_at(attrs: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """
    Date de modification connue du client, utilisée uniquement pour
    la détection de conflit.

    Raises:
        SyncOperationError: INVALID_PAYLOAD si la date est illisible
    """
    if not attrs:
        return None
    for key in UPDATED_AT_KEYS:
        value = attrs.get(key)
        if value is not None:
            return to_datetime(key, value)
    return None


# ============================
# ADAPTATEUR DE BASE
# ============================
class EntityAdapter:
    """Capacités communes à tous les types d'entités synchronisées"""

    entity_type: EntityType
    model: Type = None
    # nom canonique -> type de conversion
    fields: Dict[str, str] = {}
    required_keys: Tuple[str, ...] = ()
    # variante acceptée -> nom canonique
    aliases: Dict[str, str] = {}

    # ----- clés -----
    def canonical(self, attrs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Ramène les clés du payload à leur nom canonique (le canonique l'emporte)"""
        result: Dict[str, Any] = {}
        for key, value in (attrs or {}).items():
            name = self.aliases.get(key, key)
            if name in PROTECTED_KEYS or name not in self.fields:
                continue
            if name in result and key != name:
                continue
            result[name] = value
        return result

    def _check_required(self, values: Dict[str, Any]) -> None:
        missing = [key for key in self.required_keys if values.get(key) is None]
        if missing:
            raise _invalid(
                f"Champs obligatoires manquants pour {self.entity_type.value}: {', '.join(missing)}"
            )

    def _convert(self, values: Dict[str, Any]) -> Dict[str, Any]:
        converted = {}
        for key, value in values.items():
            if value is None:
                converted[key] = None
                continue
            converted[key] = CONVERTERS[self.fields[key]](key, value)
        return converted

    # ----- opérations -----
    def from_map(self, attrs: Optional[Dict[str, Any]]):
        """Construit une nouvelle entité (non persistée)"""
        values = self.canonical(attrs)
        self._check_required(values)
        entity = self.model(**self._convert(values))
        self.on_create(entity)
        return entity

    def apply_map(self, entity, attrs: Optional[Dict[str, Any]]) -> None:
        """
        Met à jour une entité existante.
        Les clés obligatoires doivent être présentes, les clés optionnelles
        absentes conservent leur valeur.
        """
        values = self.canonical(attrs)
        self._check_required(values)
        for key, value in self._convert(values).items():
            setattr(entity, key, value)

    def to_map(self, entity) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": entity.id}
        for key, kind in self.fields.items():
            data[key] = _dump(kind, getattr(entity, key))
        data["created_at"] = format_timestamp(entity.created_at)
        data["updated_at"] = format_timestamp(entity.updated_at)
        return data

    def parse_id(self, raw: Optional[str]) -> int:
        if raw is None or not str(raw).strip():
            raise _invalid(f"entity_id requis pour {self.entity_type.value}")
        text = str(raw).strip()
        if not text.isdigit():
            raise _invalid(f"entity_id invalide: {raw!r}")
        return int(text)

    def get_last_modified(self, entity) -> Optional[datetime]:
        if entity.updated_at is None:
            return None
        return normalize(entity.updated_at)

    def set_last_modified(self, entity, value: datetime) -> None:
        entity.updated_at = normalize(value)

    def on_create(self, entity) -> None:
        """Valeurs par défaut propres au type, appliquées à la création"""


# ============================
# ADAPTATEURS PAR TYPE
# ============================
class ProductAdapter(EntityAdapter):
    entity_type = EntityType.PRODUCT
    model = Product
    fields = {
        "name": "str",
        "description": "str",
        "barcode": "str",
        "category": "str",
        "unit": "str",
        "purchase_price": "decimal",
        "selling_price": "decimal",
        "stock_quantity": "decimal",
        "min_stock_level": "decimal",
        "is_active": "bool",
    }
    required_keys = ("name", "selling_price", "stock_quantity")
    aliases = {
        "sellingPrice": "selling_price",
        "price": "selling_price",
        "stockQuantity": "stock_quantity",
        "purchasePrice": "purchase_price",
        "minStockLevel": "min_stock_level",
        "isActive": "is_active",
    }

    def on_create(self, entity) -> None:
        if entity.is_active is None:
            entity.is_active = True
        if entity.unit is None:
            entity.unit = "pcs"


class SaleAdapter(EntityAdapter):
    entity_type = EntityType.SALE
    model = Sale
    fields = {
        "sale_number": "str",
        "sale_date": "datetime",
        "total_amount": "decimal",
        "discount_amount": "decimal",
        "tax_amount": "decimal",
        "final_amount": "decimal",
        "payment_method": "str",
        "status": "str",
        "customer_name": "str",
        "customer_phone": "str",
        "customer_email": "str",
        "notes": "str",
    }
    required_keys = ("total_amount",)
    aliases = {
        "totalAmount": "total_amount",
        "amount": "total_amount",
        "saleNumber": "sale_number",
        "saleDate": "sale_date",
        "discountAmount": "discount_amount",
        "taxAmount": "tax_amount",
        "finalAmount": "final_amount",
        "paymentMethod": "payment_method",
        "customerName": "customer_name",
        "customerPhone": "customer_phone",
        "customerEmail": "customer_email",
    }

    def on_create(self, entity) -> None:
        if entity.sale_date is None:
            entity.sale_date = utc_now()
        if entity.discount_amount is None:
            entity.discount_amount = Decimal("0")
        if entity.tax_amount is None:
            entity.tax_amount = Decimal("0")
        if entity.final_amount is None:
            entity.final_amount = entity.total_amount - entity.discount_amount + entity.tax_amount
        if entity.payment_method is None:
            entity.payment_method = "cash"
        if entity.status is None:
            entity.status = "completed"


class StockMovementAdapter(EntityAdapter):
    entity_type = EntityType.STOCK_MOVEMENT
    model = StockMovement
    fields = {
        "product_id": "int",
        "quantity": "decimal",
        "movement_type": "str",
        "reason": "str",
        "reference": "str",
    }
    required_keys = ("product_id", "quantity", "movement_type")
    aliases = {
        "productId": "product_id",
        "movementType": "movement_type",
    }


ADAPTERS: Dict[str, EntityAdapter] = {
    adapter.entity_type.value: adapter
    for adapter in (ProductAdapter(), SaleAdapter(), StockMovementAdapter())
}


def get_adapter(entity_type: Optional[str]) -> Optional[EntityAdapter]:
    """Adaptateur du type demandé, None si le type n'est pas synchronisé"""
    if not entity_type:
        return None
    return ADAPTERS.get(entity_type.strip().lower())
