"""
Smoke test against a running instance.

Runs lightweight HTTP checks:
- GET /health
- POST /api/webhook/task twice with the same provider_event_id
  (the second call must be reported as a duplicate)

Requires SMOKE_API_KEY (a fin_... key issued for a test tenant).
"""

from __future__ import annotations

import os
import sys
import uuid
from pathlib import Path

import httpx

# Allow `python scripts/smoke_webhooks.py` from any directory
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.core.logging import get_logger, setup_logging  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _task_payload(event_id: str) -> dict:
    return {
        "title": "Smoke test",
        "status": "success",
        "duration": 1.5,
        "source": "smoke",
        "provider_event_id": event_id,
    }


def _check_status(resp: httpx.Response, expected_family: int = 2) -> None:
    family = resp.status_code // 100
    if family != expected_family:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="finished-notify-smoke")

    api_key = os.environ.get("SMOKE_API_KEY")
    if not api_key:
        raise SystemExit("SMOKE_API_KEY is not set")

    base_url = _base_url()
    timeout = _timeout_seconds()
    event_id = f"smoke-{uuid.uuid4()}"

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        resp = client.get(f"{base_url}/health")
        _check_status(resp)

        task_url = f"{base_url}/api/webhook/task"
        headers = {"Authorization": f"Bearer {api_key}"}

        first = client.post(task_url, json=_task_payload(event_id), headers=headers)
        _check_status(first)
        second = client.post(task_url, json=_task_payload(event_id), headers=headers)
        _check_status(second)

        if first.json()["duplicate"] or not second.json()["duplicate"]:
            raise RuntimeError(f"Deduplication failed: {first.json()} / {second.json()}")
        if first.json()["eventId"] != second.json()["eventId"]:
            raise RuntimeError("Replay returned a different event id")

    logger.info("Smoke tests completed successfully", extra_data={"event_id": event_id})


if __name__ == "__main__":
    main()
