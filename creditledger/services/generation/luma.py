"""
Luma Dream Machine provider: text-to-video generations.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
import pybreaker

from creditledger.core.config import settings
from creditledger.services.circuit_breaker import GENERATION_PROVIDER, get_circuit_breaker
from creditledger.services.generation.base import (
    GenerationProvider,
    GenerationProviderError,
    GenerationRequest,
    GenerationStatus,
    JobState,
    SubmittedGeneration,
)

logger = logging.getLogger(__name__)

# Luma reports "dreaming" while rendering.
LUMA_STATES = {
    "queued": JobState.QUEUED,
    "pending": JobState.QUEUED,
    "dreaming": JobState.PROCESSING,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
}

DEFAULT_OPTIONS = {"aspect_ratio": "16:9", "loop": True}


def map_state(raw: Any) -> JobState:
    if isinstance(raw, str):
        return LUMA_STATES.get(raw.strip().lower(), JobState.PROCESSING)
    return JobState.PROCESSING


class LumaProvider(GenerationProvider):
    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        probe_timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.api_key = api_key or settings.luma_api_key
        self.api_url = (api_url or settings.luma_api_url).rstrip("/")
        self.timeout = timeout or settings.luma_timeout
        self.probe_timeout = probe_timeout or settings.asset_probe_timeout
        self.transport = transport
        self.breaker = breaker or get_circuit_breaker(GENERATION_PROVIDER)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        def send() -> dict[str, Any]:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, f"{self.api_url}{path}", headers=headers, **kwargs)
                response.raise_for_status()
                return response.json()

        try:
            body = self.breaker.call(send)
        except pybreaker.CircuitBreakerError as e:
            raise GenerationProviderError("generation provider circuit open") from e
        except httpx.HTTPStatusError as e:
            raise GenerationProviderError(
                f"generation provider returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationProviderError(f"generation provider request failed: {type(e).__name__}") from e
        if not isinstance(body, dict):
            raise GenerationProviderError("unexpected generation provider response")
        return body

    def submit(self, request: GenerationRequest) -> SubmittedGeneration:
        payload = {**DEFAULT_OPTIONS, **request.options, "prompt": request.prompt, "model": request.model}
        body = self._request("POST", "/generations", json=payload)
        provider_id = body.get("id")
        if not provider_id:
            raise GenerationProviderError("generation response missing id")
        logger.info("generation_submitted", extra={"job_id": provider_id, "state": body.get("state")})
        return SubmittedGeneration(provider_id=str(provider_id), state=map_state(body.get("state")))

    def get_status(self, provider_id: str) -> GenerationStatus:
        body = self._request("GET", f"/generations/{provider_id}")
        assets = body.get("assets") or {}
        asset_url = assets.get("video") if isinstance(assets, dict) else None
        return GenerationStatus(
            state=map_state(body.get("state")),
            asset_url=asset_url or None,
            failure_reason=body.get("failure_reason"),
        )

    def probe_asset(self, url: str) -> bool:
        try:
            with httpx.Client(timeout=self.probe_timeout, transport=self.transport, follow_redirects=True) as client:
                response = client.head(url)
                if response.status_code in (403, 405, 501):
                    # Some CDNs refuse HEAD; ask for the first byte instead.
                    response = client.get(url, headers={"Range": "bytes=0-0"})
                return response.is_success
        except httpx.HTTPError as e:
            logger.warning("asset_probe_error", extra={"error": type(e).__name__})
            return False
