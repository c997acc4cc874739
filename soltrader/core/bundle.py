import logging
import random
from typing import Optional

import httpx

from soltrader.utils.logging_utils import jlog


class BundleRelay:
    """Best-effort atomic co-submission of a swap plus a tip transfer.

    Never raises: any failure returns None / "error" so the caller's direct
    broadcast goes ahead regardless.
    """

    def __init__(self, cfg, logger: logging.Logger, rpc, signer, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.logger = logger
        self.rpc = rpc
        self.signer = signer
        self.client = client or httpx.AsyncClient(timeout=10.0)

    def _tip_account(self) -> str:
        return random.choice(self.cfg.bundle.tip_accounts)

    async def _post(self, method: str, params):
        resp = await self.client.post(self.cfg.bundle.url, json={
            "jsonrpc": "2.0", "id": 1, "method": method, "params": params,
        })
        return resp.json()

    async def send_bundle(self, signed_swap_b64: str, tip_lamports: Optional[int] = None) -> Optional[str]:
        tip = self.cfg.bundle.tip_lamports if tip_lamports is None else tip_lamports
        try:
            blockhash = await self.rpc.get_latest_blockhash()
            tip_b64 = self.signer.tip_transfer_b64(self._tip_account(), tip, blockhash)
            data = await self._post("sendBundle", [[signed_swap_b64, tip_b64], {"encoding": "base64"}])
        except Exception as e:
            jlog(self.logger, "BUNDLE_SEND_FAIL", logging.ERROR, error=repr(e))
            return None
        if not isinstance(data, dict) or data.get("error"):
            err = data.get("error") if isinstance(data, dict) else data
            jlog(self.logger, "BUNDLE_ERROR", logging.ERROR, error=err)
            return None
        bundle_id = data.get("result")
        jlog(self.logger, "BUNDLE_SUBMITTED", bundle_id=bundle_id, tip_lamports=tip)
        return bundle_id or None

    async def get_bundle_status(self, bundle_id: str) -> str:
        try:
            data = await self._post("getBundleStatuses", [[bundle_id]])
            values = ((data or {}).get("result") or {}).get("value") or []
            if not values:
                return "unknown"
            return values[0].get("confirmation_status") or values[0].get("status") or "unknown"
        except Exception as e:
            jlog(self.logger, "BUNDLE_STATUS_FAIL", logging.ERROR, bundle_id=bundle_id, error=repr(e))
            return "error"

    async def close(self):
        await self.client.aclose()
