from __future__ import annotations
import time

import httpx

from .errors import ProviderAuthError, check_response, transport_error
from .openai import chat_content, chat_payload
from .types import ProviderRequest, ProviderResponse

DEFAULT_API_VERSION = "2024-02-01"


class AzureOpenAIProvider:
    """Azure OpenAI chat completions; the model name is the deployment name."""

    vendor = "azure"

    def __init__(
        self,
        endpoint: str | None,
        api_key: str | None,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = (endpoint or "").rstrip("/")
        self.api_key = api_key
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint and self.api_key)

    async def generate(self, req: ProviderRequest) -> ProviderResponse:
        if not self.enabled:
            raise ProviderAuthError(self.vendor, "Azure OpenAI disabled: missing AZURE_OPENAI_ENDPOINT or AZURE_OPENAI_API_KEY")
        t0 = time.perf_counter()
        url = f"{self.endpoint}/openai/deployments/{req.model}/chat/completions"
        headers = {"api-key": self.api_key or "", "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.post(url, params={"api-version": self.api_version}, json=chat_payload(req), headers=headers)
            except httpx.HTTPError as e:
                raise transport_error(self.vendor, e) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        data = check_response(self.vendor, r)
        content = chat_content(self.vendor, data, r.status_code)
        return ProviderResponse(content, latency_ms, {"deployment": req.model, "usage": data.get("usage")})
