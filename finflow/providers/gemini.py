from __future__ import annotations
import time
from typing import Any, Dict

import httpx

from .errors import ProviderAuthError, ProviderRequestError, TransientProviderError, body_field, check_response, transport_error
from .types import ProviderRequest, ProviderResponse

GEMINI_API = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider:
    vendor = "googleai"

    def __init__(self, api_key: str | None, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def generate(self, req: ProviderRequest) -> ProviderResponse:
        if not self.enabled:
            raise ProviderAuthError(self.vendor, "Gemini disabled: missing GOOGLE_API_KEY")
        t0 = time.perf_counter()
        url = GEMINI_API.format(model=req.model)
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": req.prompt}]}],
            "generationConfig": {
                "temperature": req.params.temperature,
                "maxOutputTokens": req.params.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        if req.params.safety_settings:
            payload["safetySettings"] = [
                {"category": c, "threshold": t} for c, t in req.params.safety_settings
            ]
        headers = {"x-goog-api-key": self.api_key or ""}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise transport_error(self.vendor, e) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        data = check_response(self.vendor, r)
        feedback = data.get("promptFeedback")
        block = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block:
            raise ProviderRequestError(self.vendor, f"prompt blocked: {block}", r.status_code)
        candidate = body_field(self.vendor, data, ("candidates", 0), r.status_code, dict)
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        text = "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))
        if not text.strip():
            reason = candidate.get("finishReason") or "no content"
            raise TransientProviderError(self.vendor, f"empty response ({reason})", r.status_code)
        meta = {
            "candidates": len(data["candidates"]),
            "finish_reason": candidate.get("finishReason"),
            "usage": data.get("usageMetadata"),
        }
        return ProviderResponse(text, latency_ms, meta)
