import asyncio
import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from soltrader.data.models import DecodeError, ParsedTransaction, RpcError, SimulationResult
from soltrader.utils.retry import TransientError

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class LedgerRpc:
    """Minimal Solana JSON-RPC client over httpx."""

    def __init__(self, cfg, logger: logging.Logger, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.logger = logger
        self.commitment = cfg.rpc.commitment
        self.client = client or httpx.AsyncClient(timeout=cfg.rpc.timeout_sec)
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            resp = await self.client.post(self.cfg.rpc.url, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientError(f"{method}: {e!r}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"{method}: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise RpcError(method, resp.status_code, resp.text[:200])
        try:
            data = resp.json()
        except ValueError as e:
            raise DecodeError(f"{method}: body is not JSON") from e
        if not isinstance(data, dict):
            raise DecodeError(f"{method}: body is not an object")
        if data.get("error"):
            err = data["error"]
            raise RpcError(method, err.get("code"), err.get("message", str(err)))
        return data.get("result")

    async def get_parsed_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        result = await self.call("getTransaction", [signature, {
            "encoding": "jsonParsed",
            "maxSupportedTransactionVersion": 0,
            "commitment": "confirmed",
        }])
        if not result or not result.get("meta"):
            # indexer has not caught up with confirmation yet
            return None
        return ParsedTransaction.from_json(signature, result)

    async def simulate_transaction(self, tx_b64: str) -> SimulationResult:
        result = await self.call("simulateTransaction", [tx_b64, {
            "encoding": "base64",
            "sigVerify": False,
            "commitment": self.commitment,
        }])
        return SimulationResult.from_json(result)

    async def send_transaction(self, tx_b64: str) -> str:
        result = await self.call("sendTransaction", [tx_b64, {
            "encoding": "base64",
            "skipPreflight": True,
            "maxRetries": 2,
        }])
        if not isinstance(result, str):
            raise DecodeError(f"sendTransaction: expected signature string, got {result!r}")
        return result

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self.call("getSignatureStatuses", [[signature], {"searchTransactionHistory": False}])
        values = (result or {}).get("value") or [None]
        return values[0]

    async def confirm_transaction(self, signature: str, timeout_sec: float, poll_sec: float = 1.0) -> Any:
        """Poll until the signature reaches our commitment; returns the on-chain ``err`` (None on success)."""
        want = _COMMITMENT_RANK.get(self.commitment, 1)
        deadline = time.monotonic() + timeout_sec
        while True:
            status = await self.get_signature_status(signature)
            if status:
                reached = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "processed", 0)
                if status.get("err") is not None:
                    return status["err"]
                if reached >= want:
                    return None
            if time.monotonic() >= deadline:
                raise TransientError(f"confirmation timeout after {timeout_sec}s for {signature}")
            await asyncio.sleep(poll_sec)

    async def get_token_balance_raw(self, owner: str, mint: str) -> int:
        result = await self.call("getTokenAccountsByOwner", [owner, {"mint": mint}, {"encoding": "jsonParsed"}])
        total = 0
        for acct in (result or {}).get("value") or []:
            try:
                amount = acct["account"]["data"]["parsed"]["info"]["tokenAmount"]["amount"]
            except (KeyError, TypeError) as e:
                raise DecodeError(f"getTokenAccountsByOwner: unexpected account shape for {mint}") from e
            total += int(amount)
        return total

    async def get_mint_decimals(self, mint: str) -> int:
        result = await self.call("getAccountInfo", [mint, {"encoding": "jsonParsed"}])
        try:
            return int(result["value"]["data"]["parsed"]["info"]["decimals"])
        except (KeyError, TypeError) as e:
            raise DecodeError(f"getAccountInfo: no parsed decimals for {mint}") from e

    async def get_balance(self, pubkey: str) -> int:
        result = await self.call("getBalance", [pubkey, {"commitment": self.commitment}])
        try:
            return int(result["value"])
        except (KeyError, TypeError) as e:
            raise DecodeError("getBalance: missing value") from e

    async def get_latest_blockhash(self) -> str:
        result = await self.call("getLatestBlockhash", [{"commitment": "confirmed"}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as e:
            raise DecodeError("getLatestBlockhash: missing blockhash") from e

    async def close(self):
        await self.client.aclose()
