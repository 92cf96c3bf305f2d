# backend/territory/routers/metrics.py
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ..services.runtime_metrics import METRICS

router = APIRouter(prefix="/metrics", tags=["ops"])


@router.get("", response_class=PlainTextResponse)
def metrics():
    # Prometheus text-ish format; dotted names become underscores
    lines = []
    for k, v in sorted(METRICS.snapshot()["counters"].items()):
        lines.append(f"territory_{k.replace('.', '_')} {v}")
    return "\n".join(lines) + "\n"


@router.get("/last_failure")
def last_failure():
    return {"last_failure": METRICS.snapshot()["last_failure"]}
