from __future__ import annotations
import time
from typing import Any, Dict

import httpx

from .errors import ProviderAuthError, TransientProviderError, body_field, check_response, transport_error
from .types import ProviderRequest, ProviderResponse


def chat_payload(req: ProviderRequest) -> Dict[str, Any]:
    return {
        "messages": [{"role": "user", "content": req.prompt}],
        "temperature": req.params.temperature,
        "max_tokens": req.params.max_output_tokens,
        "response_format": {"type": "json_object"},
    }


def chat_content(vendor: str, data: Dict[str, Any], status: int) -> str:
    content = body_field(vendor, data, ("choices", 0, "message", "content"), status)
    if not isinstance(content, str) or not content.strip():
        raise TransientProviderError(vendor, "empty response", status)
    return content


class OpenAIProvider:
    vendor = "openai"

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def generate(self, req: ProviderRequest) -> ProviderResponse:
        if not self.enabled:
            raise ProviderAuthError(self.vendor, "OpenAI disabled: missing OPENAI_API_KEY")
        t0 = time.perf_counter()
        url = f"{self.base_url}/chat/completions"
        payload = chat_payload(req)
        payload["model"] = req.model
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise transport_error(self.vendor, e) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        data = check_response(self.vendor, r)
        content = chat_content(self.vendor, data, r.status_code)
        meta = {
            "model": data.get("model"),
            "usage": data.get("usage"),
        }
        return ProviderResponse(content, latency_ms, meta)
