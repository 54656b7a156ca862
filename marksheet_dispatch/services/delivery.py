"""External delivery of marksheets to parents.

The messaging integration sits behind an HTTPS endpoint. Each delivery is a
signed JSON POST (HMAC-SHA256 in ``X-Delivery-Signature``) retried with
exponential backoff. The outcome is returned as a ``DeliveryResult``; the
workflow decides what a failure means for the marksheet.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime, UTC
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from marksheet_dispatch.config import get_settings
from marksheet_dispatch.models.marksheet import Marksheet
from marksheet_dispatch.services.result_deriver import apply_result_normalization

logger = logging.getLogger(__name__)

RETRY_DELAYS = [1, 2, 4]  # seconds


class DeliveryResult(BaseModel):
    success: bool
    error: Optional[str] = None


def build_delivery_payload(marksheet: Marksheet) -> Dict[str, Any]:
    """Summary sent to the messaging integration (no signatures, no images)."""
    normalized = apply_result_normalization(marksheet)
    details = normalized.student_details
    return {
        "event": "marksheet.dispatch",
        "marksheet_id": normalized.id,
        "phone_number": details.parent_phone_number,
        "student": {
            "name": details.name,
            "reg_number": details.reg_number,
            "department": details.department,
            "year": details.year,
        },
        "examination_name": normalized.display_examination_name,
        "subjects": [
            {"subject_name": s.subject_name, "marks": s.marks, "grade": s.grade, "result": s.result}
            for s in normalized.subjects
        ],
        "overall_result": normalized.overall_result,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def sign_payload(payload_bytes: bytes, signing_key: str) -> str:
    return hmac.new(signing_key.encode("utf-8"), payload_bytes, hashlib.sha256).hexdigest()


class HttpDeliveryChannel:
    """Delivers marksheets through the configured HTTPS endpoint."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        signing_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.endpoint_url = endpoint_url if endpoint_url is not None else settings.delivery_endpoint_url
        self.signing_key = signing_key if signing_key is not None else settings.delivery_signing_key
        self.max_retries = max_retries or settings.delivery_max_retries
        self.timeout_seconds = timeout_seconds or settings.delivery_timeout_seconds

    async def send(self, marksheet: Marksheet) -> DeliveryResult:
        """Send one marksheet. Never raises for delivery problems.

        Args:
            marksheet: Marksheet to deliver (must have a parent phone number)

        Returns:
            DeliveryResult: success, or the last error seen
        """
        if not self.endpoint_url:
            return DeliveryResult(success=False, error="Delivery channel is not configured")
        if not self.endpoint_url.startswith("https://"):
            return DeliveryResult(success=False, error="Delivery endpoint must use HTTPS")
        if not marksheet.student_details.parent_phone_number:
            return DeliveryResult(success=False, error="No parent phone number available")

        payload_bytes = json.dumps(build_delivery_payload(marksheet), default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Delivery-Signature": sign_payload(payload_bytes, self.signing_key),
            "User-Agent": "Marksheet-Dispatch-Service/1.0",
        }

        last_error = None
        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Delivering marksheet {marksheet.id} (attempt {attempt + 1}/{self.max_retries})"
                )
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.endpoint_url, content=payload_bytes, headers=headers)

                if 200 <= response.status_code < 300:
                    return DeliveryResult(success=True)

                logger.warning(
                    f"Delivery returned non-2xx status: {response.status_code}, "
                    f"body={response.text[:200]}"
                )
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"

            except httpx.TimeoutException as e:
                logger.warning(f"Delivery timeout on attempt {attempt + 1}: {str(e)}")
                last_error = f"Timeout: {str(e)}"

            except httpx.HTTPError as e:
                logger.warning(f"Delivery error on attempt {attempt + 1}: {str(e)}")
                last_error = str(e)

            if attempt < self.max_retries - 1:
                delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                logger.info(f"Retrying delivery in {delay} seconds...")
                await asyncio.sleep(delay)

        logger.error(
            f"Delivery of marksheet {marksheet.id} failed after {self.max_retries} attempts: {last_error}"
        )
        return DeliveryResult(success=False, error=last_error)
