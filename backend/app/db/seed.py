from __future__ import annotations

import logging

from sqlalchemy import select

from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.db.models.models_v1 import Supplier

logger = logging.getLogger(__name__)


def run_seed():
    # Schéma minimal pour le dev local (en prod : alembic upgrade head)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        supplier = db.scalar(select(Supplier).where(Supplier.name == "Default Supplier"))
        if not supplier:
            supplier = Supplier(name="Default Supplier", country="AU", lead_time_days=7)
            db.add(supplier)
            db.commit()

        logger.info("SEED OK: supplier=%s", supplier.name)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed()
