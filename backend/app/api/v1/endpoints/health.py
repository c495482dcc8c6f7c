from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(prefix="/health")


@router.get("")
def health():
    return {"status": "ok"}
