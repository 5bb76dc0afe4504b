import os

# Base SQLite en mémoire avant le chargement de la configuration
os.environ["DATABASE_URI"] = "sqlite://"

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import init_db, get_session_factory
from app.main import create_app
from app.models import Product, Sale


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def app(session_factory):
    app = create_app(create_tables=False)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def seed(session_factory):
    """Insère une entité directement en base et la retourne"""

    def _seed(model, **values):
        with session_factory() as db, db.begin():
            entity = model(**values)
            db.add(entity)
        return entity

    return _seed


@pytest.fixture
def seed_product(seed):
    def _seed_product(updated_at=datetime(2024, 1, 1, 10, 0, 0), **values):
        values.setdefault("name", "Produit")
        values.setdefault("selling_price", Decimal("1.00"))
        values.setdefault("stock_quantity", Decimal("0"))
        values.setdefault("category", "X")
        return seed(Product, created_at=updated_at, updated_at=updated_at, **values)

    return _seed_product


@pytest.fixture
def seed_sale(seed):
    def _seed_sale(updated_at=datetime(2024, 1, 1, 10, 0, 0), **values):
        values.setdefault("total_amount", Decimal("10.00"))
        return seed(Sale, created_at=updated_at, updated_at=updated_at, **values)

    return _seed_sale
