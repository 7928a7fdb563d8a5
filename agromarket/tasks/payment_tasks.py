from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from agromarket.services.payment_callback_service import process_stk_callback


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="agromarket.tasks.payment_tasks.process_mpesa_callback",
    max_retries=5,
)
def process_mpesa_callback_task(self, *, payload: dict, trace_id: str = ""):
    started = time.perf_counter()
    try:
        result = process_stk_callback(payload, request_id=trace_id)
    except Exception as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "process_mpesa_callback",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log(
            "process_mpesa_callback",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            detail=str(exc),
        )
        raise
    _task_log(
        "process_mpesa_callback",
        status=str(result.get("status") or "ok"),
        started_at=started,
        trace_id=trace_id,
        checkout_request_id=str(result.get("checkout_request_id") or ""),
    )
    return result
