from datetime import datetime
from decimal import Decimal

import pytest

from app.models import Product, Sale, SyncConflict, SyncLog
from app.services.sync_stores import EntityStore, SyncLogStore
from app.utils.timestamps import utc_now


def _push(client, *operations, **extra):
    return client.post("/sync/batch", json={"operations": list(operations), **extra})


def _create_product(local_id="tmp-1", name="Widget"):
    return {
        "entity_type": "product",
        "operation_type": "create",
        "local_id": local_id,
        "entity_data": {"name": name, "sellingPrice": "9.99", "stockQuantity": 10, "category": "X"},
    }


def _count(session_factory, model):
    with session_factory() as db:
        return db.query(model).count()


def test_create_product(client, session_factory):
    response = _push(client, _create_product(), device_id="dev-1", app_version="2.0.0")

    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 1
    assert body["total_processed"] == 1
    result = body["results"][0]
    assert result["status"] == "success"
    assert result["local_id"] == "tmp-1"
    assert result["server_id"]

    with session_factory() as db:
        product = db.get(Product, int(result["server_id"]))
        assert product.name == "Widget"
        assert product.selling_price == Decimal("9.99")


def test_update_with_stale_version_records_conflict(client, session_factory, seed_product):
    seed_product(id=7, name="Old", updated_at=datetime(2024, 1, 1, 10, 0, 0))

    response = _push(client, {
        "entity_type": "product",
        "operation_type": "update",
        "entity_id": "7",
        "entity_data": {
            "name": "New", "sellingPrice": "5.00", "stockQuantity": 1, "category": "X",
            "updated_at": "2024-01-01T09:59:00.000Z",
        },
    })

    body = response.json()
    assert response.status_code == 200
    assert body["conflict_count"] == 1
    assert body["results"][0]["status"] == "conflict"

    envelope = body["conflicts"][0]
    assert envelope["conflict_type"] == "VERSION_MISMATCH"
    assert envelope["priority"] == "MEDIUM"
    assert envelope["local_data"]["name"] == "New"
    assert envelope["server_data"]["name"] == "Old"
    assert envelope["server_data"]["updated_at"] == "2024-01-01T10:00:00.000Z"

    with session_factory() as db:
        conflicts = db.query(SyncConflict).all()
        assert len(conflicts) == 1
        assert conflicts[0].resolved_at is None
        assert str(conflicts[0].id) == envelope["conflict_id"]
        product = db.get(Product, 7)
        assert product.name == "Old"
        assert product.updated_at == datetime(2024, 1, 1, 10, 0, 0)


def test_update_with_matching_version_succeeds_and_advances_updated_at(client, session_factory, seed_product):
    seed_product(id=7, name="Old", updated_at=datetime(2024, 1, 1, 10, 0, 0))
    started = utc_now()

    response = _push(client, {
        "entity_type": "product",
        "operation_type": "update",
        "entity_id": 7,
        "entity_data": {
            "name": "New", "selling_price": "5.00", "stock_quantity": "1",
            "updated_at": "2024-01-01T10:00:00.000Z",
        },
    })

    result = response.json()["results"][0]
    assert result["status"] == "success"
    assert result["entity_id"] == "7"
    assert result["server_id"] == "7"
    with session_factory() as db:
        product = db.get(Product, 7)
        assert product.name == "New"
        assert product.category == "X"
        assert product.updated_at >= started


def test_update_without_client_version_is_last_writer_wins(client, session_factory, seed_product):
    seed_product(id=3, name="Old")

    response = _push(client, {
        "entity_type": "product",
        "operation_type": "update",
        "entity_id": "3",
        "entity_data": {"name": "Mine", "sellingPrice": "2", "stockQuantity": 0},
    })

    assert response.json()["results"][0]["status"] == "success"
    assert _count(session_factory, SyncConflict) == 0


def test_idempotent_delete_of_missing_sale(client, session_factory):
    response = _push(client, {"entity_type": "sale", "operation_type": "delete", "entity_id": "999999"})

    body = response.json()
    assert body["success_count"] == 1
    assert body["conflict_count"] == 0
    assert body["results"][0]["server_id"] == "999999"
    assert _count(session_factory, SyncConflict) == 0


def test_delete_after_server_update_is_delete_update_conflict(client, session_factory, seed_sale):
    seed_sale(id=5, updated_at=datetime(2024, 1, 1, 10, 0, 0))

    response = _push(client, {
        "entity_type": "sale",
        "operation_type": "delete",
        "entity_id": "5",
        "entity_data": {"updated_at": "2024-01-01T09:00:00.000Z", "user_id": 12},
    })

    body = response.json()
    assert body["conflicts"][0]["conflict_type"] == "DELETE_UPDATE"
    with session_factory() as db:
        assert db.get(Sale, 5) is not None
        assert db.query(SyncConflict).one().user_id == 12


def test_delete_existing_sale(client, session_factory, seed_sale):
    seed_sale(id=5, updated_at=datetime(2024, 1, 1, 10, 0, 0))

    response = _push(client, {
        "entity_type": "sale",
        "operation_type": "delete",
        "entity_id": "5",
        "entity_data": {"updated_at": "2024-01-01T10:00:00.000Z"},
    })

    assert response.json()["results"][0]["status"] == "success"
    assert _count(session_factory, Sale) == 0


def test_partial_success_keeps_input_order(client, session_factory):
    response = _push(
        client,
        _create_product("tmp-1", "A"),
        {
            "entity_type": "product",
            "operation_type": "update",
            "entity_id": "42",
            "entity_data": {"name": "X", "sellingPrice": "1", "stockQuantity": 1},
        },
        _create_product("tmp-3", "C"),
    )

    body = response.json()
    assert response.status_code == 200
    assert body["success_count"] == 2
    assert body["error_count"] == 1
    assert [r["status"] for r in body["results"]] == ["success", "failed", "success"]
    assert [r["local_id"] for r in body["results"]] == ["tmp-1", None, "tmp-3"]
    assert body["errors"][0]["error_code"] == "NOT_FOUND"
    assert body["errors"][0]["entity_id"] == "42"
    assert _count(session_factory, Product) == 2


def test_per_operation_error_codes(client, session_factory):
    response = _push(
        client,
        {"entity_type": "receipt", "operation_type": "create", "entity_data": {}},
        {"entity_type": "product", "operation_type": "merge", "entity_id": "1"},
        {"entity_type": "product", "operation_type": "create", "entity_data": {"name": "No price"}},
        {"entity_type": "product", "operation_type": "update", "entity_data": {"name": "x"}},
        {"entity_type": "sale", "operation_type": "create", "entity_data": {"amount": "not-a-number"}},
    )

    body = response.json()
    assert response.status_code == 200
    assert [e["error_code"] for e in body["errors"]] == [
        "UNSUPPORTED_ENTITY", "UNSUPPORTED_ENTITY", "INVALID_PAYLOAD", "INVALID_PAYLOAD", "INVALID_PAYLOAD",
    ]
    assert body["error_count"] == 5
    assert _count(session_factory, Product) == 0
    assert _count(session_factory, Sale) == 0


def test_counters_and_statistics(client, seed_product):
    seed_product(id=1)
    response = _push(
        client,
        _create_product("a"),
        {"entity_type": "sale", "operation_type": "create", "entity_data": {"totalAmount": "3.50"}},
        {"entity_type": "product", "operation_type": "delete", "entity_id": "1"},
        {"entity_type": "product", "operation_type": "update", "entity_id": "99", "entity_data": {}},
    )

    body = response.json()
    assert body["total_processed"] == (
        body["success_count"] + body["error_count"] + body["conflict_count"] + body["skipped_count"]
    )
    assert body["total_processed"] == 4
    stats = body["statistics"]
    assert stats["by_entity_type"] == {"product": 3, "sale": 1}
    assert stats["by_operation_type"] == {"create": 2, "delete": 1, "update": 1}
    assert stats["total_data_size_bytes"] > 0
    assert body["server_timestamp"].endswith("Z")
    assert body["sync_session_id"]


def test_each_batch_gets_a_fresh_session_id(client):
    first = _push(client, _create_product("a")).json()["sync_session_id"]
    second = _push(client, _create_product("b")).json()["sync_session_id"]
    assert first != second


def test_applying_the_same_batch_twice_keeps_the_final_state(client, session_factory, seed_product, seed_sale):
    seed_product(id=1, name="P1", updated_at=datetime(2024, 1, 1, 10, 0, 0))
    seed_sale(id=2, updated_at=datetime(2024, 1, 1, 10, 0, 0))
    operations = [
        {
            "entity_type": "product",
            "operation_type": "update",
            "entity_id": "1",
            "entity_data": {
                "name": "P1 bis", "sellingPrice": "3.00", "stockQuantity": 4,
                "updated_at": "2024-01-01T10:00:00.000Z",
            },
        },
        {
            "entity_type": "sale",
            "operation_type": "delete",
            "entity_id": "2",
            "entity_data": {"updated_at": "2024-01-01T10:00:00.000Z"},
        },
    ]

    def snapshot():
        with session_factory() as db:
            products = [(p.id, p.name, p.selling_price, p.stock_quantity, p.updated_at) for p in db.query(Product)]
            sales = [s.id for s in db.query(Sale)]
            return products, sales

    first = _push(client, *operations).json()
    after_first = snapshot()
    second = _push(client, *operations).json()
    after_second = snapshot()

    assert first["success_count"] == 2
    assert second["error_count"] == 0
    assert after_first == after_second
    assert after_first[0][0][1] == "P1 bis"
    assert after_first[1] == []


def test_empty_batch_is_rejected_without_log(client, session_factory):
    response = client.post("/sync/batch", json={"operations": []})

    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "EMPTY_BATCH"
    assert _count(session_factory, SyncLog) == 0


def test_oversize_batch_is_rejected_before_processing(client, session_factory):
    operations = [_create_product(f"tmp-{i}") for i in range(101)]
    response = _push(client, *operations)

    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "BATCH_TOO_LARGE"
    assert _count(session_factory, Product) == 0


def test_batch_of_exactly_one_hundred_is_accepted(client, session_factory):
    operations = [_create_product(f"tmp-{i}") for i in range(100)]
    response = _push(client, *operations)

    assert response.status_code == 200
    assert response.json()["success_count"] == 100
    assert _count(session_factory, Product) == 100


def test_malformed_body_is_400(client):
    response = client.post("/sync/batch", json={"operations": "not-a-list"})
    assert response.status_code == 400


def test_processed_batch_is_logged(client, session_factory):
    _push(client, _create_product(), device_id="dev-9", app_version="1.2.3")

    with session_factory() as db:
        log = db.query(SyncLog).one()
        assert log.sync_type == "BATCH"
        assert log.device_id == "dev-9"
        assert log.app_version == "1.2.3"
        assert log.operations_count == 1
        assert log.success_count == 1


# =======================
# Opérations mal formées
# =======================
@pytest.mark.parametrize("malformed", [
    {"entity_type": "product", "operation_type": "create", "entity_data": "oops"},
    {"entity_type": "product", "operation_type": "create", "entity_data": {"name": "x"}, "timestamp": "not-a-date"},
    {"entity_type": "product", "operation_type": "create", "entity_data": {"name": "x"}, "priority": "high"},
    {"entity_type": "product", "operation_type": "create", "entity_data": {"name": "x"}, "retry_count": 1.5},
    {"operation_type": "create", "entity_data": {"name": "x"}},
    {"entity_type": "product", "entity_data": {"name": "x"}},
    {"entity_type": "product", "operation_type": "delete", "entity_id": True},
])
def test_malformed_operation_fails_alone(client, session_factory, malformed):
    response = _push(client, _create_product("a", "A"), malformed, _create_product("b", "B"))

    body = response.json()
    assert response.status_code == 200
    assert [r["status"] for r in body["results"]] == ["success", "failed", "success"]
    assert body["success_count"] == 2
    assert [e["error_code"] for e in body["errors"]] == ["INVALID_PAYLOAD"]
    assert _count(session_factory, Product) == 2


def test_lenient_operation_fields_are_accepted(client, session_factory):
    operation = dict(_create_product(), timestamp=1704103200000, priority=3, retry_count=0, local_id=42)

    body = _push(client, operation).json()

    assert body["results"][0]["status"] == "success"
    assert body["results"][0]["local_id"] == "42"


def test_delete_of_missing_entity_ignores_unreadable_version(client):
    body = _push(client, {
        "entity_type": "sale", "operation_type": "delete", "entity_id": "404",
        "entity_data": {"updated_at": "not-a-date"},
    }).json()

    assert body["results"][0]["status"] == "success"
    assert body["error_count"] == 0


# =======================
# Pannes internes
# =======================
def test_sync_log_failure_does_not_fail_the_batch(client, session_factory, monkeypatch):
    def broken_append(self, entry):
        raise RuntimeError("journal indisponible")

    monkeypatch.setattr(SyncLogStore, "append", broken_append)

    response = _push(client, _create_product())

    assert response.status_code == 200
    assert response.json()["success_count"] == 1
    assert _count(session_factory, Product) == 1
    assert _count(session_factory, SyncLog) == 0


def test_failed_snapshot_reload_leaves_server_data_empty(client, seed_product, monkeypatch):
    seed_product(id=7, name="Old", updated_at=datetime(2024, 1, 1, 10, 0, 0))
    original = EntityStore.find_by_id
    calls = []

    def find_then_break(self, adapter, entity_id):
        calls.append(entity_id)
        if len(calls) > 1:
            raise RuntimeError("base indisponible")
        return original(self, adapter, entity_id)

    monkeypatch.setattr(EntityStore, "find_by_id", find_then_break)

    body = _push(client, {
        "entity_type": "product", "operation_type": "update", "entity_id": "7",
        "entity_data": {"name": "New", "sellingPrice": "5", "stockQuantity": 1, "updated_at": "2024-01-01T09:00:00Z"},
    }).json()

    assert body["conflict_count"] == 1
    assert body["conflicts"][0]["server_data"] is None
    assert body["conflicts"][0]["local_data"]["name"] == "New"
    assert len(calls) == 2


def test_store_exception_becomes_internal_failure(client, session_factory, monkeypatch):
    def broken_save(self, adapter, entity):
        raise RuntimeError("disque plein")

    monkeypatch.setattr(EntityStore, "save", broken_save)

    body = _push(client, _create_product(), {
        "entity_type": "sale", "operation_type": "delete", "entity_id": "404",
    }).json()

    assert [r["status"] for r in body["results"]] == ["failed", "success"]
    assert body["errors"][0]["error_code"] == "INTERNAL"
    assert body["errors"][0]["error_message"] == "disque plein"
    assert body["results"][0]["message"] == "disque plein"
    assert _count(session_factory, Product) == 0
