import os

# Avant tout import de l'app : pas de Postgres ni de timer pendant les tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db
from backend.app.db.base import Base
from backend.app.db.models.models_v1 import Product, Provider, ReorderRule, Tenant
from backend.app.main import app

# 2026-03-10 10:00 UTC -> même jour calendaire en UTC et Europe/Madrid
FIXED_NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite : laisser SQLAlchemy émettre BEGIN pour que les SAVEPOINT fonctionnent
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """
    Session DB isolée par test.

    Transaction englobante sur la connexion ; la session travaille en
    SAVEPOINT. TOUT est rollback à la fin du test, même après commit().
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint", autoflush=False)

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


# ---------- Factories ----------
@pytest.fixture
def make_tenant(db_session):
    counter = {"n": 0}

    def _make(name: str | None = None, timezone_name: str = "Europe/Madrid", active: bool = True) -> Tenant:
        counter["n"] += 1
        tenant = Tenant(name=name or f"TEST-TENANT-{counter['n']}", timezone=timezone_name, active=active)
        db_session.add(tenant)
        db_session.flush()
        return tenant

    return _make


@pytest.fixture
def make_provider(db_session):
    counter = {"n": 0}

    def _make(tenant: Tenant, name: str | None = None) -> Provider:
        counter["n"] += 1
        provider = Provider(tenant_id=tenant.id, name=name or f"TEST-PROVIDER-{counter['n']}")
        db_session.add(provider)
        db_session.flush()
        return provider

    return _make


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(tenant: Tenant, *, stock: int, unit_price: str = "10.00", code: str | None = None) -> Product:
        counter["n"] += 1
        product = Product(
            tenant_id=tenant.id,
            code=code or f"TEST-SKU-{counter['n']}",
            name=f"TEST-PROD-{counter['n']}",
            stock=stock,
            unit_price=Decimal(unit_price),
        )
        db_session.add(product)
        db_session.flush()
        return product

    return _make


@pytest.fixture
def make_rule(db_session):
    def _make(
        product: Product,
        provider: Provider,
        *,
        trigger_stock: int,
        reorder_qty: int,
        enabled: bool = True,
        requires_approval: bool = False,
    ) -> ReorderRule:
        rule = ReorderRule(
            tenant_id=product.tenant_id,
            product_id=product.id,
            provider_id=provider.id,
            trigger_stock=trigger_stock,
            reorder_qty=reorder_qty,
            enabled=enabled,
            requires_approval=requires_approval,
        )
        db_session.add(rule)
        db_session.flush()
        return rule

    return _make


@pytest.fixture
def scenario(db_session, make_tenant, make_provider, make_product, make_rule):
    """
    Produit A stock=3, règle trigger=10 qty=50 (P1)
    Produit B stock=1, règle trigger=5 qty=20 (P1)
    Produit C stock=20, règle trigger=5 désactivée
    """
    tenant = make_tenant()
    p1 = make_provider(tenant, name="P1")
    a = make_product(tenant, stock=3, unit_price="12.50", code="A")
    b = make_product(tenant, stock=1, unit_price="4.20", code="B")
    c = make_product(tenant, stock=20, unit_price="7.00", code="C")
    make_rule(a, p1, trigger_stock=10, reorder_qty=50)
    make_rule(b, p1, trigger_stock=5, reorder_qty=20)
    make_rule(c, p1, trigger_stock=5, reorder_qty=10, enabled=False)
    db_session.commit()
    return {"tenant": tenant, "provider": p1, "a": a, "b": b, "c": c}
