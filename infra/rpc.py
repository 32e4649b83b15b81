# infra/rpc.py

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Optional

import aiohttp

from deploy import config
from infra.metrics import METRICS


def _normalize_url(url: str) -> str:
    u = str(url).strip()
    if not u:
        return u
    if "://" not in u:
        u = "https://" + u
    return u


def _url_host(url: str) -> str:
    u = _normalize_url(url).lower()
    if "://" in u:
        u = u.split("://", 1)[1]
    return u.split("/", 1)[0]


def _normalize_rpc_error(msg: Optional[str]) -> str:
    text = str(msg or "").lower()
    if "timeout" in text:
        return "timeout"
    if "http_429" in text or "rate limit" in text:
        return "rate_limited"
    if "http_5" in text:
        return "http_5xx"
    if "revert" in text:
        return "revert"
    if "rpc" in text or "http_" in text:
        return "rpc_error"
    return "internal_error"


def _extract_revert_hex(ed: Any) -> Optional[str]:
    if isinstance(ed, dict):
        if isinstance(ed.get("data"), str):
            return ed["data"]
        if isinstance(ed.get("result"), str):
            return ed["result"]
        for _k, v in ed.items():
            if isinstance(v, dict):
                if isinstance(v.get("return"), str):
                    return v["return"]
                if isinstance(v.get("data"), str):
                    return v["data"]
    if isinstance(ed, str):
        return ed
    return None


class RPCError(RuntimeError):
    """JSON-RPC failure. `data` carries revert bytes (hex) when the node returned any."""

    def __init__(self, message: str, *, method: str = "", data: Optional[str] = None, retryable: bool = True) -> None:
        self.method = method
        self.data = data
        self.retryable = retryable
        super().__init__(message)


class AsyncRPC:
    """Async JSON-RPC client with:
    - persistent aiohttp session
    - per-call timeouts (clamped to deploy.config RPC_TIMEOUT_MIN_S..MAX_S)
    - retries + exponential backoff for transient errors / rate limits
    - JSON-RPC errors are not retried; their revert data is kept on RPCError
    """

    def __init__(
        self,
        url: str,
        *,
        default_timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
    ):
        self.url = _normalize_url(url)
        if not self.url:
            raise ValueError("AsyncRPC requires a url")
        if default_timeout_s is None:
            default_timeout_s = float(getattr(config, "RPC_DEFAULT_TIMEOUT_S", 10.0))
        if max_retries is None:
            max_retries = int(getattr(config, "RPC_RETRY_COUNT", 1))
        if backoff_base_s is None:
            backoff_base_s = float(getattr(config, "RPC_BACKOFF_BASE_S", 0.35))
        self.default_timeout_s = float(default_timeout_s)
        self.max_retries = int(max_retries)
        self.backoff_base_s = float(backoff_base_s)
        self._id = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session
        self._session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=8, ttl_dns_cache=300))
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "AsyncRPC":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _clamp_timeout(self, timeout_s: Optional[float]) -> float:
        to_s = float(timeout_s) if timeout_s is not None else self.default_timeout_s
        min_t = float(getattr(config, "RPC_TIMEOUT_MIN_S", 2.0))
        max_t = float(getattr(config, "RPC_TIMEOUT_MAX_S", 20.0))
        if max_t < min_t:
            max_t = min_t
        return max(min_t, min(max_t, to_s))

    async def call(
        self,
        method: str,
        params: list,
        *,
        timeout_s: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> Any:
        """Perform a JSON-RPC call and return its `result`.

        Transport failures (timeouts, HTTP 429/5xx, connection errors) are
        retried with backoff, `retries` times (default `max_retries`). Pass
        retries=0 for calls that must not be sent twice, such as
        eth_sendRawTransaction. A JSON-RPC `error` object is final: it raises
        RPCError immediately, with any revert payload in `.data`.
        """
        max_retries = self.max_retries if retries is None else max(0, int(retries))

        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}

        session = await self._get_session()
        to_s = self._clamp_timeout(timeout_s)
        host = _url_host(self.url)
        last_err: Optional[str] = None

        for attempt in range(max_retries + 1):
            t0 = time.perf_counter()
            METRICS.inc("rpc_requests_total", 1)
            METRICS.inc_reason("rpc_requests_by_method", method, 1)
            try:

                async def _do():
                    async with session.post(self.url, json=payload) as resp:
                        if resp.status >= 400:
                            text = await resp.text()
                            raise aiohttp.ClientResponseError(
                                request_info=resp.request_info,
                                history=resp.history,
                                status=resp.status,
                                message=text,
                                headers=resp.headers,
                            )
                        return await resp.json()

                data = await asyncio.wait_for(_do(), timeout=to_s)
                METRICS.observe("rpc_latency_ms", (time.perf_counter() - t0) * 1000.0)

                if isinstance(data, dict) and "error" in data:
                    err = data["error"]
                    err_data = err.get("data") if isinstance(err, dict) else None
                    message = err.get("message") if isinstance(err, dict) else str(err)
                    METRICS.inc_reason("rpc_fail_by_reason", "rpc_error", 1)
                    raise RPCError(
                        f"rpc_error:{method}:{message}",
                        method=method,
                        data=_extract_revert_hex(err_data),
                        retryable=False,
                    )
                if not isinstance(data, dict):
                    raise ValueError(f"unexpected response type {type(data).__name__}")
                return data.get("result")

            except asyncio.TimeoutError:
                last_err = f"timeout({to_s}s)"
            except aiohttp.ClientResponseError as e:
                last_err = f"http_{e.status}"
                if e.status not in (429, 500, 502, 503, 504):
                    break
            except (aiohttp.ClientError, ValueError) as e:
                last_err = f"{type(e).__name__}: {e}"
            METRICS.observe("rpc_latency_ms", (time.perf_counter() - t0) * 1000.0)

            if attempt < max_retries:
                sleep_s = (self.backoff_base_s * (2 ** attempt)) + random.random() * 0.25
                if last_err and "http_429" in last_err:
                    sleep_s += float(getattr(config, "RPC_RATE_LIMIT_BACKOFF_S", 0.35))
                await asyncio.sleep(sleep_s)

        METRICS.inc_reason("rpc_fail_by_reason", _normalize_rpc_error(last_err), 1)
        raise RPCError(f"RPC call {method} to {host} failed after retries: {last_err}", method=method)

    async def eth_call(self, to: str, data: str, block: str = "latest", *, from_addr: Optional[str] = None) -> str:
        params = {"to": to, "data": data}
        if from_addr:
            params["from"] = from_addr
        return await self.call("eth_call", [params, block])

    async def get_block_number(self, *, timeout_s: Optional[float] = None) -> int:
        res = await self.call("eth_blockNumber", [], timeout_s=timeout_s)
        return int(res, 16)

    async def chain_id(self) -> int:
        res = await self.call("eth_chainId", [])
        return int(res, 16) if isinstance(res, str) else int(res)
