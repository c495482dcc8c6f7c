import os

# Base de test isolée : jamais la DATABASE_URL de dev/prod
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from backend.app.api.deps import get_db  # noqa: E402
from backend.app.db.base import Base  # noqa: E402
from backend.app.db.models.models_v1 import Supplier  # noqa: E402
from backend.app.db.models.core_types import POStatus  # noqa: E402
from backend.app.db.session import SessionLocal, engine  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.services import procurement  # noqa: E402


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Session DB isolée par test.

    Schéma recréé à chaque test, TOUT est supprimé à la fin.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def supplier(db_session) -> Supplier:
    s = Supplier(name="Harbour Glass Supply", country="AU", lead_time_days=5)
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture
def make_po(db_session, supplier):
    """
    Fabrique de PO : lignes (sku, qty, prix) puis avance jusqu'au statut demandé
    par le chemin légal.
    """
    counter = {"n": 0}

    path = [
        POStatus.approved,
        POStatus.sent_to_supplier,
        POStatus.supplier_confirmed,
    ]

    def _make(lines=(("SKU-1", 10, "10.00"),), status=POStatus.draft):
        counter["n"] += 1
        po = procurement.create_purchase_order(
            db_session,
            po_number=f"PO-{counter['n']:04d}",
            supplier_id=supplier.id,
            lines=[
                procurement.NewLine(
                    product_sku=sku,
                    product_name=f"Product {sku}",
                    qty_ordered=qty,
                    unit_price=Decimal(price),
                )
                for sku, qty, price in lines
            ],
            actor="buyer",
        )
        if status == POStatus.draft:
            return po

        po = procurement.submit_purchase_order(db_session, po.id, actor="buyer")
        if po.status == POStatus.pending_approval and status != POStatus.pending_approval:
            po = procurement.transition_status(db_session, po.id, POStatus.approved, actor="manager")

        for step in path:
            if po.status == status:
                break
            if po.status == step:
                continue
            po = procurement.transition_status(db_session, po.id, step, actor="buyer")
        assert po.status == status
        return po

    return _make
