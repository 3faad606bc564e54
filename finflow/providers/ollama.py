from __future__ import annotations
import time

import httpx

from .errors import TransientProviderError, body_field, check_response, transport_error
from .types import ProviderRequest, ProviderResponse


class OllamaProvider:
    vendor = "ollama"

    def __init__(self, host: str = "http://localhost:11434", timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = host.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return True

    async def generate(self, req: ProviderRequest) -> ProviderResponse:
        t0 = time.perf_counter()
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": req.model,
            "messages": [{"role": "user", "content": req.prompt}],
            "stream": False,
            "format": "json",
            "options": {
                "temperature": req.params.temperature,
                "num_predict": req.params.max_output_tokens,
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.post(url, json=payload)
            except httpx.HTTPError as e:
                raise transport_error(self.vendor, e) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        data = check_response(self.vendor, r)
        content = body_field(self.vendor, data, ("message", "content"), r.status_code)
        if not isinstance(content, str) or not content.strip():
            raise TransientProviderError(self.vendor, "empty response", r.status_code)
        meta = {k: data.get(k) for k in ("total_duration", "load_duration", "prompt_eval_count", "eval_count")}
        return ProviderResponse(content, latency_ms, meta)
