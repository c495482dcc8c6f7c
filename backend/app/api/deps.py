from __future__ import annotations

from typing import Generator
from backend.app.db.session import SessionLocal
from backend.services.lifecycle import OrderLifecycle
from backend.services.receiving import ReceiptReconciler


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_lifecycle() -> OrderLifecycle:
    return OrderLifecycle()


def get_reconciler() -> ReceiptReconciler:
    return ReceiptReconciler()
