"""Pushes the MOU average of a wastage entry to the inward challan service."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import httpx
from loguru import logger

from wastage_service.core.config import Settings

API_KEY_HEADER = "X-API-Key"


class InwardChallanNotifier:
    """HTTP client for the inward challan MOU update endpoint.

    ``notify_average`` never raises: the outcome is ``True``/``False`` and the
    reason for a failure is logged. 404 and 400 responses end the call at
    once; every other failure is retried, waiting ``attempt * base_delay``
    seconds between attempts.
    """

    def __init__(
        self,
        base_url: str,
        update_path: str,
        *,
        api_key: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.update_path = update_path
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

        headers = {"Accept": "application/json"}
        if api_key:
            headers[API_KEY_HEADER] = api_key
            logger.info("inward_challan_api_key_configured")
        else:
            logger.warning("inward_challan_api_key_missing")

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "InwardChallanNotifier":
        return cls(
            settings.INWARD_CHALLAN_API_URL,
            settings.INWARD_CHALLAN_UPDATE_PATH,
            api_key=settings.INWARD_CHALLAN_API_KEY,
            max_attempts=settings.NOTIFY_MAX_ATTEMPTS,
            base_delay=settings.NOTIFY_BASE_DELAY_SEC,
            timeout=settings.NOTIFY_TIMEOUT_SEC,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def notify_average(self, challan_id: str, mou_average: Decimal) -> bool:
        if not challan_id or not challan_id.strip():
            logger.warning("mou_update_skipped_blank_challan")
            return False
        if mou_average < 0:
            logger.bind(challan_id=challan_id, mou_average=str(mou_average)).warning(
                "mou_update_skipped_negative_average"
            )
            return False

        body = {"challan_id": challan_id, "mou_average": float(mou_average)}
        for attempt in range(1, self.max_attempts + 1):
            log = logger.bind(challan_id=challan_id, attempt=attempt)
            log.bind(path=self.update_path, body=body).info("mou_update_attempt")
            try:
                response = await self._client.post(self.update_path, json=body)
            except httpx.TimeoutException as exc:
                log.bind(error=repr(exc)).error("mou_update_timeout")
            except httpx.HTTPError as exc:
                log.bind(error=repr(exc)).error("mou_update_request_failed")
            except Exception:
                log.exception("mou_update_unexpected_error")
            else:
                if response.is_success:
                    log.info("mou_update_succeeded")
                    return True
                if response.status_code == 404:
                    log.warning("mou_update_challan_not_found")
                    return False
                if response.status_code == 400:
                    log.bind(response=response.text).warning("mou_update_bad_request")
                    return False
                log.bind(status=response.status_code).warning("mou_update_failed_status")

            if attempt < self.max_attempts:
                delay = self.base_delay * attempt
                log.bind(delay=delay).info("mou_update_retry_wait")
                await self._sleep(delay)

        logger.bind(challan_id=challan_id, max_attempts=self.max_attempts).error(
            "mou_update_gave_up"
        )
        return False
