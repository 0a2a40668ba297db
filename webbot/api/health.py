"""Liveness endpoint polled by chat clients for the online/offline indicator."""

from typing import Any

from fastapi import APIRouter

router = APIRouter()


@router.get("")
async def health_check() -> dict[str, Any]:
    """Return a liveness flag. The server holds no backing services to probe."""
    return {"ok": True}
