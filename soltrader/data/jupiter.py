import logging
from typing import Any, Dict, Optional

import httpx

from soltrader.utils.logging_utils import jlog
from soltrader.utils.retry import ApiError, RetryPolicy, TransientError, parse_retry_after


def should_retry(status: int) -> bool:
    return status == 429 or 500 <= status < 600


class JupiterApi:
    """Thin HTTP wrapper over the Jupiter quote and swap endpoints."""

    def __init__(self, cfg, logger: logging.Logger, client: Optional[httpx.AsyncClient] = None,
                 policy: Optional[RetryPolicy] = None):
        self.cfg = cfg
        self.logger = logger
        headers = {"Accept": "application/json"}
        if cfg.jupiter.api_key:
            headers["x-api-key"] = cfg.jupiter.api_key
        self.client = client or httpx.AsyncClient(timeout=cfg.jupiter.timeout_sec, headers=headers)
        self.policy = policy or RetryPolicy(
            max_attempts=cfg.jupiter.http_retries + 1,
            base_delay=1.0,
            max_delay=cfg.execution.backoff_max_sec,
            jitter=0.5,
        )

    async def _get(self, url: str, params: Dict[str, str]) -> httpx.Response:
        resp = None
        for attempt in self.policy.attempts():
            try:
                resp = await self.client.get(url, params=params)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                raise TransientError(f"GET {url}: {e!r}") from e
            if not should_retry(resp.status_code):
                return resp
            if attempt < self.policy.max_attempts - 1:
                delay = await self.policy.backoff(attempt, parse_retry_after(resp.headers.get("retry-after")))
                jlog(self.logger, "JUPITER_BACKOFF", logging.WARNING, status=resp.status_code,
                     backoff_sec=round(delay, 2), attempt=attempt + 1)
        return resp

    async def quote(self, input_mint: str, output_mint: str, amount_raw: int, slippage_bps: int) -> Dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount_raw),       # minor units
            "slippageBps": str(slippage_bps),
        }
        resp = await self._get(self.cfg.jupiter.quote_url, params)
        if resp.status_code != 200:
            raise ApiError(f"quote HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code,
                           retry_after=parse_retry_after(resp.headers.get("retry-after")))
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(f"quote body is not JSON: {e}", status=resp.status_code) from e
        if not isinstance(data, dict):
            raise ApiError("quote body is not an object", status=resp.status_code)
        if data.get("error"):
            raise ApiError(f"quote error: {data['error']}", status=resp.status_code)
        return data

    async def swap(self, quote_raw: Dict[str, Any], user_pubkey: str) -> Dict[str, Any]:
        body = {
            "quoteResponse": quote_raw,
            "userPublicKey": user_pubkey,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        try:
            resp = await self.client.post(self.cfg.jupiter.swap_url, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientError(f"POST swap: {e!r}") from e
        if resp.status_code != 200:
            raise ApiError(f"swap HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code,
                           retry_after=parse_retry_after(resp.headers.get("retry-after")))
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(f"swap body is not JSON: {e}", status=resp.status_code) from e
        if not isinstance(data, dict):
            raise ApiError("swap body is not an object", status=resp.status_code)
        if data.get("error"):
            raise ApiError(f"swap error: {data['error']}", status=resp.status_code)
        return data

    async def close(self):
        await self.client.aclose()
