from datetime import datetime
from decimal import Decimal

import pytest

from app.core.exceptions import SyncOperationError
from app.core.sync_constants import SyncErrorCode
from app.models import Product
from app.services.sync_adapters import get_adapter, client_updated_at, to_decimal


def test_registry_knows_the_three_kinds():
    assert get_adapter("product").model is Product
    assert get_adapter("SALE").entity_type.value == "sale"
    assert get_adapter("stock_movement") is not None
    assert get_adapter("receipt") is None
    assert get_adapter(None) is None


def test_product_from_map_accepts_camel_case_and_keeps_decimals_exact():
    adapter = get_adapter("product")
    product = adapter.from_map({
        "name": "Widget",
        "sellingPrice": "9.99",
        "stockQuantity": 10,
        "category": "X",
        "unknown": "ignored",
    })

    assert product.name == "Widget"
    assert product.selling_price == Decimal("9.99")
    assert product.stock_quantity == Decimal("10")
    assert product.category == "X"
    assert product.is_active is True


def test_legacy_price_alias_does_not_override_canonical_key():
    adapter = get_adapter("product")
    product = adapter.from_map({
        "name": "A",
        "price": "1.00",
        "selling_price": "2.50",
        "stock_quantity": "0",
    })
    assert product.selling_price == Decimal("2.50")


def test_float_is_read_through_its_decimal_repr():
    assert to_decimal("selling_price", 9.99) == Decimal("9.99")


@pytest.mark.parametrize("value", ["abc", True, "NaN", [1], None])
def test_invalid_decimal_is_invalid_payload(value):
    adapter = get_adapter("product")
    with pytest.raises(SyncOperationError) as exc_info:
        adapter.from_map({"name": "A", "selling_price": value, "stock_quantity": 1})
    assert exc_info.value.code == SyncErrorCode.INVALID_PAYLOAD


@pytest.mark.parametrize(
    "entity_type,data",
    [
        ("product", {"name": "A", "selling_price": "1"}),
        ("sale", {"customer_name": "Bob"}),
        ("stock_movement", {"product_id": 1, "quantity": "2"}),
    ],
)
def test_missing_required_keys_are_rejected(entity_type, data):
    with pytest.raises(SyncOperationError) as exc_info:
        get_adapter(entity_type).from_map(data)
    assert exc_info.value.code == SyncErrorCode.INVALID_PAYLOAD


def test_sale_accepts_legacy_amount_and_fills_defaults():
    sale = get_adapter("sale").from_map({"amount": "12.50", "customer_name": "Bob"})
    assert sale.total_amount == Decimal("12.50")
    assert sale.final_amount == Decimal("12.50")
    assert sale.payment_method == "cash"
    assert sale.sale_date is not None


def test_stock_movement_parses_product_id_string():
    movement = get_adapter("stock_movement").from_map(
        {"productId": "7", "quantity": "-2.5", "movementType": "sale"}
    )
    assert movement.product_id == 7
    assert movement.quantity == Decimal("-2.5")
    assert movement.movement_type == "sale"


def test_apply_map_keeps_absent_optional_fields_and_ignores_updated_at():
    adapter = get_adapter("product")
    product = Product(
        name="Old", selling_price=Decimal("1.00"), stock_quantity=Decimal("1"),
        category="keep", updated_at=datetime(2024, 1, 1),
    )
    adapter.apply_map(product, {
        "name": "New", "sellingPrice": "5.00", "stockQuantity": 2,
        "updated_at": "2030-01-01T00:00:00.000Z",
    })

    assert product.name == "New"
    assert product.selling_price == Decimal("5.00")
    assert product.category == "keep"
    assert product.updated_at == datetime(2024, 1, 1)


def test_to_map_uses_snake_case_strings_and_iso_dates():
    adapter = get_adapter("product")
    product = Product(
        id=3, name="W", selling_price=Decimal("9.99"), stock_quantity=Decimal("10.000"),
        created_at=datetime(2024, 1, 1), updated_at=datetime(2024, 1, 1, 10, 0, 0, 123000),
    )
    data = adapter.to_map(product)

    assert data["id"] == 3
    assert data["selling_price"] == "9.99"
    assert data["stock_quantity"] == "10.000"
    assert data["updated_at"] == "2024-01-01T10:00:00.123Z"
    assert "sellingPrice" not in data


@pytest.mark.parametrize("raw", [None, "", "abc", "1.5", "-3"])
def test_parse_id_rejects_non_numeric(raw):
    with pytest.raises(SyncOperationError) as exc_info:
        get_adapter("product").parse_id(raw)
    assert exc_info.value.code == SyncErrorCode.INVALID_PAYLOAD


def test_parse_id_and_last_modified_round_to_millis():
    adapter = get_adapter("product")
    assert adapter.parse_id(" 42 ") == 42

    product = Product()
    adapter.set_last_modified(product, datetime(2024, 1, 1, 10, 0, 0, 123456))
    assert adapter.get_last_modified(product) == datetime(2024, 1, 1, 10, 0, 0, 123000)


def test_client_updated_at_reads_aliases():
    assert client_updated_at(None) is None
    assert client_updated_at({"name": "x"}) is None
    assert client_updated_at({"updatedAt": "2024-01-01T10:00:00.000Z"}) == datetime(2024, 1, 1, 10)
    assert client_updated_at({"updated_at": "2024-01-01T11:00:00+01:00"}) == datetime(2024, 1, 1, 10)

    with pytest.raises(SyncOperationError) as exc_info:
        client_updated_at({"updated_at": "yesterday"})
    assert exc_info.value.code == SyncErrorCode.INVALID_PAYLOAD
