"""
Completion Callback

Best-effort notification of a request's outcome. Delivery problems are
logged and never raised, so they cannot mask the outcome being reported.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"


def build_callback_payload(status: str, reason: Optional[str] = None) -> dict:
    payload = {"status": status}
    if status == STATUS_FAILED:
        payload["reason"] = reason or "Unknown error"
    return payload


def notify(url: Optional[str], status: str, reason: Optional[str] = None, timeout: float = 10.0) -> bool:
    """
    POST the outcome of a request to a callback URL.

    Args:
        url: Callback destination; nothing is sent when empty
        status: STATUS_COMPLETED or STATUS_FAILED
        reason: Human-readable failure reason (FAILED only)
        timeout: Request timeout in seconds

    Returns:
        True if the callback was delivered with a 2xx response
    """
    if not url:
        return False

    payload = build_callback_payload(status, reason)
    try:
        response = httpx.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Callback to {url} failed ({status}): {e}")
        return False

    logger.info(f"Callback delivered to {url}: {status}")
    return True
