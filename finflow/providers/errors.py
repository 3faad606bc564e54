from __future__ import annotations
from typing import Any, Optional, Tuple, Union

import httpx

TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504}
AUTH_STATUS = {401, 403}


class ProviderError(Exception):
    retryable = False

    def __init__(self, vendor: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{vendor}: {message}")
        self.vendor = vendor
        self.status = status


class TransientProviderError(ProviderError):
    """Throttling, overload, network trouble or an empty answer."""

    retryable = True


class ProviderAuthError(ProviderError):
    pass


class ProviderRequestError(ProviderError):
    pass


def _error_text(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text[:300]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err)[:300]
    return str(err or data)[:300]


def check_response(vendor: str, r: httpx.Response) -> Any:
    """Return the decoded JSON body of a 200 response or raise a classified error."""
    if r.status_code in TRANSIENT_STATUS:
        raise TransientProviderError(vendor, f"HTTP {r.status_code}: {_error_text(r)}", r.status_code)
    if r.status_code in AUTH_STATUS:
        raise ProviderAuthError(vendor, f"HTTP {r.status_code}: {_error_text(r)}", r.status_code)
    if r.status_code >= 500:
        raise TransientProviderError(vendor, f"HTTP {r.status_code}: {_error_text(r)}", r.status_code)
    if r.status_code != 200:
        raise ProviderRequestError(vendor, f"HTTP {r.status_code}: {_error_text(r)}", r.status_code)
    try:
        data = r.json()
    except ValueError as e:
        raise TransientProviderError(vendor, f"undecodable response body: {e}", r.status_code) from e
    if not isinstance(data, dict):
        raise TransientProviderError(vendor, "malformed response body: not a JSON object", r.status_code)
    return data


def body_field(vendor: str, data: Any, path: Tuple[Union[str, int], ...], status: Optional[int] = None,
               kind: Optional[type] = None) -> Any:
    """Follow ``path`` (object keys and list indices) through a decoded body.

    A missing step or a value of the wrong shape is a retryable malformed response.
    """
    node = data
    for i, step in enumerate(path):
        if isinstance(step, int):
            ok = isinstance(node, list) and 0 <= step < len(node)
        else:
            ok = isinstance(node, dict) and step in node
        if not ok:
            where = ".".join(str(s) for s in path[:i + 1])
            raise TransientProviderError(vendor, f"malformed response body: no {where}", status)
        node = node[step]
    if kind is not None and not isinstance(node, kind):
        where = ".".join(str(s) for s in path)
        raise TransientProviderError(vendor, f"malformed response body: unexpected {where}", status)
    return node


def transport_error(vendor: str, exc: httpx.HTTPError) -> TransientProviderError:
    return TransientProviderError(vendor, f"{type(exc).__name__}: {exc}")
