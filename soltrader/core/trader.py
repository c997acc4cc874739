import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from soltrader.core.fill import Fill, reconcile_fill
from soltrader.data.models import (
    DecodeError, FillSource, Quote, RpcError, SwapPayload, SwapResult, human_to_raw, raw_to_human,
)
from soltrader.utils.db import append_swap
from soltrader.utils.guards import Guards
from soltrader.utils.logging_utils import jlog
from soltrader.utils.retry import ApiError, ErrorKind, RetryPolicy, SwapAttemptError, TransientError

DEFAULT_DECIMALS = 9


class Trader:
    """Live execution client: quote, submit with bounded retries, reconcile the real fill."""

    def __init__(self, cfg, logger: logging.Logger, api, rpc, signer, guards: Optional[Guards] = None,
                 bundle=None, policy: Optional[RetryPolicy] = None, sleep=asyncio.sleep,
                 db_path: Optional[str] = None):
        self.cfg = cfg
        self.logger = logger
        self.api = api
        self.rpc = rpc
        self.signer = signer
        self.guards = guards or Guards(cfg)
        self.bundle = bundle
        self.sleep = sleep
        self.policy = policy or RetryPolicy(
            max_attempts=cfg.execution.max_retries + 1,
            base_delay=cfg.execution.backoff_base_sec,
            max_delay=cfg.execution.backoff_max_sec,
            sleep=sleep,
        )
        self.db_path = db_path
        self.clock = time.monotonic
        self.trade_logs: List[Dict[str, Any]] = []
        self.decimals_cache: Dict[str, int] = {
            cfg.quote_mint: cfg.quote_decimals,
            cfg.native_mint: cfg.native_decimals,
        }
        self._balance_cache: Optional[Tuple[float, float]] = None  # (usdc, written_at)

    async def sync_positions(self, positions):
        # the live wallet is the ledger itself
        return None

    # ---------- lookups ----------
    async def get_decimals(self, mint: str) -> int:
        cached = self.decimals_cache.get(mint)
        if cached is not None:
            return cached
        try:
            decimals = await self.rpc.get_mint_decimals(mint)
        except (TransientError, RpcError, DecodeError) as e:
            # not cached, so the next call tries again
            jlog(self.logger, "DECIMALS_DEFAULT", logging.WARNING, mint=mint, default=DEFAULT_DECIMALS, error=str(e))
            return DEFAULT_DECIMALS
        self.decimals_cache[mint] = decimals
        return decimals

    async def get_token_balance_raw(self, mint: str) -> int:
        return await self.rpc.get_token_balance_raw(self.signer.pubkey, mint)

    async def get_quote_balance(self) -> float:
        now = self.clock()
        if self._balance_cache is not None:
            value, written_at = self._balance_cache
            if now - written_at < self.cfg.execution.balance_cache_ttl_sec:
                return value
        raw = await self.rpc.get_token_balance_raw(self.signer.pubkey, self.cfg.quote_mint)
        value = raw_to_human(raw, self.cfg.quote_decimals)
        self._balance_cache = (value, self.clock())
        return value

    def invalidate_balance_cache(self):
        self._balance_cache = None

    async def get_native_balance(self) -> float:
        lamports = await self.rpc.get_balance(self.signer.pubkey)
        return raw_to_human(lamports, self.cfg.native_decimals)

    # ---------- quoting ----------
    async def get_quote(self, input_mint: str, output_mint: str, amount_raw: int, slippage_bps: int) -> Optional[Quote]:
        try:
            data = await self.api.quote(input_mint, output_mint, amount_raw, slippage_bps)
            in_dec, out_dec = await asyncio.gather(self.get_decimals(input_mint), self.get_decimals(output_mint))
            return Quote.from_json(data, in_dec, out_dec, slippage_bps)
        except (ApiError, TransientError, DecodeError) as e:
            jlog(self.logger, "QUOTE_FAIL", logging.ERROR, input_mint=input_mint, output_mint=output_mint,
                 amount_raw=amount_raw, error=str(e))
            return None

    async def quote_impact(self, mint: str, size_usdc: float, slippage_bps: int) -> float:
        """Lightweight entry probe. Raises TransientError / ApiError so callers can tell them apart."""
        raw = human_to_raw(size_usdc, self.cfg.quote_decimals)
        data = await self.api.quote(self.cfg.quote_mint, mint, raw, slippage_bps)
        try:
            return float(data.get("priceImpactPct") or 0.0)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"priceImpactPct not numeric: {data.get('priceImpactPct')!r}") from e

    # ---------- execution ----------
    def _fail(self, quote: Quote, side: str, started: float, error: str) -> SwapResult:
        return SwapResult(
            success=False, side=side, usdc_amount=0.0, token_amount=0.0, token_amount_raw=0,
            price_impact_pct=quote.price_impact_pct, latency_ms=int((self.clock() - started) * 1000),
            fill_source=FillSource.NOT_EXECUTED, error=error,
        )

    async def execute_swap(self, quote: Quote, use_bundle: bool = False, trade_type: str = "trade") -> SwapResult:
        started = self.clock()
        is_buy = quote.input_mint == self.cfg.quote_mint
        side = "buy" if is_buy else "sell"

        guard = self.guards.validate_quote(quote)
        if not guard.passed:
            jlog(self.logger, "SWAP_GUARD_REJECT", logging.WARNING, kind=ErrorKind.GUARD_REJECTION.value,
                 side=side, reason=guard.reason)
            result = self._fail(quote, side, started, guard.reason or "Guard check failed")
            await self._log_trade(quote, result, trade_type)
            return result

        last_error = ""
        for attempt in self.policy.attempts():
            try:
                signature = await self._attempt(quote, use_bundle, attempt)
            except SwapAttemptError as e:
                last_error = str(e)
                jlog(self.logger, "SWAP_ATTEMPT_FAIL", logging.WARNING, kind=e.kind.value, side=side,
                     attempt=attempt, error=last_error)
                if e.backoff and attempt < self.policy.max_attempts - 1:
                    await self.policy.backoff(attempt, e.retry_after)
                continue
            except Exception as e:
                last_error = repr(e)
                jlog(self.logger, "SWAP_ATTEMPT_ERROR", logging.ERROR, side=side, attempt=attempt, error=last_error)
                continue

            # confirmed: the cached balance is stale from here on
            self.invalidate_balance_cache()
            fill = await self._reconcile(signature, quote, is_buy)
            result = SwapResult(
                success=True, side=side, usdc_amount=fill.usdc_amount, token_amount=fill.token_amount,
                token_amount_raw=fill.token_amount_raw, price_impact_pct=quote.price_impact_pct,
                fee=fill.fee, latency_ms=int((self.clock() - started) * 1000), fill_source=fill.source,
                signature=signature,
            )
            await self._log_trade(quote, result, trade_type)
            jlog(self.logger, "SWAP_EXECUTED", side=side, signature=signature,
                 usdc_amount=round(result.usdc_amount, 4), token_amount=result.token_amount,
                 impact=round(quote.price_impact_pct, 2), fee=round(fill.fee, 6),
                 fill_source=fill.source.value, latency_ms=result.latency_ms)
            return result

        result = self._fail(quote, side, started, f"Failed after {self.policy.max_attempts} attempts: {last_error}")
        await self._log_trade(quote, result, trade_type)
        return result

    async def _attempt(self, quote: Quote, use_bundle: bool, attempt: int) -> str:
        try:
            payload = SwapPayload.from_json(await self.api.swap(quote.raw, self.signer.pubkey))
        except ApiError as e:
            raise SwapAttemptError(ErrorKind.API_ERROR, str(e), backoff=True, retry_after=e.retry_after) from e
        except TransientError as e:
            raise SwapAttemptError(ErrorKind.TRANSIENT_NETWORK, str(e), backoff=True) from e
        except DecodeError as e:
            raise SwapAttemptError(ErrorKind.API_ERROR, str(e)) from e

        try:
            if self.cfg.execution.simulate_before_submit:
                sim = await self.rpc.simulate_transaction(payload.swap_transaction)
                check = self.guards.validate_simulation(sim)
                if not check.passed:
                    raise SwapAttemptError(ErrorKind.SIMULATION_FAILURE, check.reason or "Simulation failed")

            signed = self.signer.sign_b64(payload.swap_transaction)
            if use_bundle and self.bundle is not None:
                bundle_id = await self.bundle.send_bundle(signed)
                if not bundle_id:
                    jlog(self.logger, "BUNDLE_FALLBACK", logging.WARNING, attempt=attempt)
            # direct broadcast always happens; the bundle only accelerates
            signature = await self.rpc.send_transaction(signed)
        except (TransientError, RpcError) as e:
            raise SwapAttemptError(ErrorKind.TRANSIENT_NETWORK, str(e), backoff=True) from e
        except DecodeError as e:
            raise SwapAttemptError(ErrorKind.API_ERROR, str(e)) from e

        try:
            err = await self.rpc.confirm_transaction(
                signature, self.cfg.execution.confirm_timeout_sec, self.cfg.execution.confirm_poll_sec)
        except (TransientError, RpcError) as e:
            # broadcast already happened: look once more before treating it as lost
            err = await self._late_status(signature, e)
        if err is not None:
            raise SwapAttemptError(ErrorKind.ONCHAIN_ERROR, f"Tx confirmed with error: {err} ({signature})")
        return signature

    async def _late_status(self, signature: str, cause: Exception) -> Any:
        try:
            status = await self.rpc.get_signature_status(signature)
        except (TransientError, RpcError, DecodeError):
            status = None
        if status and status.get("err") is None and status.get("confirmationStatus") in ("confirmed", "finalized"):
            jlog(self.logger, "CONFIRM_LATE", logging.WARNING, signature=signature)
            return None
        raise SwapAttemptError(ErrorKind.TRANSIENT_NETWORK, f"Confirmation failed for {signature}: {cause}")

    async def _reconcile(self, signature: str, quote: Quote, is_buy: bool) -> Fill:
        ex = self.cfg.execution
        tx = None
        # the parsed-tx index lags confirmation by a few seconds
        for r in range(ex.fill_fetch_attempts):
            if r > 0:
                await self.sleep(ex.fill_fetch_delay_sec)
            try:
                tx = await self.rpc.get_parsed_transaction(signature)
            except (TransientError, RpcError, DecodeError) as e:
                jlog(self.logger, "FILL_FETCH_ERROR", logging.WARNING, signature=signature, attempt=r, error=str(e))
                tx = None
            if tx is not None:
                break

        fill = reconcile_fill(
            tx, quote, self.signer.pubkey, is_buy,
            quote_mint=self.cfg.quote_mint, quote_decimals=self.cfg.quote_decimals,
            native_mint=self.cfg.native_mint, native_decimals=self.cfg.native_decimals,
        )
        if fill.source != FillSource.ONCHAIN:
            jlog(self.logger, "FILL_QUOTE_FALLBACK", logging.WARNING,
                 kind=ErrorKind.RECONCILIATION_FALLBACK.value, signature=signature,
                 side="buy" if is_buy else "sell", tx_found=tx is not None)
        return fill

    # ---------- wrappers ----------
    def _no_quote(self, side: str, usdc_amount: float) -> SwapResult:
        return SwapResult(success=False, side=side, usdc_amount=usdc_amount, token_amount=0.0,
                          token_amount_raw=0, error="Failed to get quote")

    async def buy_token(self, mint: str, usdc_amount: float, slippage_bps: int, use_bundle: bool = False) -> SwapResult:
        raw = human_to_raw(usdc_amount, self.cfg.quote_decimals)
        quote = await self.get_quote(self.cfg.quote_mint, mint, raw, slippage_bps)
        if quote is None:
            return self._no_quote("buy", usdc_amount)
        return await self.execute_swap(quote, use_bundle)

    async def sell_token(self, mint: str, token_amount_raw: int, slippage_bps: int, use_bundle: bool = False,
                         trade_type: str = "trade") -> SwapResult:
        quote = await self.get_quote(mint, self.cfg.quote_mint, token_amount_raw, slippage_bps)
        if quote is None:
            return self._no_quote("sell", 0.0)
        return await self.execute_swap(quote, use_bundle, trade_type)

    # ---------- audit ----------
    async def _log_trade(self, quote: Quote, result: SwapResult, trade_type: str):
        entry = build_trade_log(quote, result, trade_type, self.cfg.quote_mint)
        self.trade_logs.append(entry)
        if not self.db_path:
            return
        try:
            await append_swap(self.db_path, entry)
        except Exception as e:
            jlog(self.logger, "TRADE_LOG_PERSIST_FAIL", logging.WARNING, id=entry["id"], error=repr(e))

    async def close(self):
        await self.api.close()
        await self.rpc.close()
        if self.bundle is not None:
            await self.bundle.close()


def build_trade_log(quote: Quote, result: SwapResult, trade_type: str, quote_mint: str) -> Dict[str, Any]:
    """One audit row. Slippage is signed positive = worse than quoted."""
    is_buy = quote.input_mint == quote_mint
    in_h, out_h = quote.in_human, quote.out_human
    if is_buy:
        quote_price = in_h / out_h if out_h > 0 else 0.0
    else:
        quote_price = out_h / in_h if in_h > 0 else 0.0

    measured = (result.success and result.fill_source == FillSource.ONCHAIN
                and result.token_amount > 0 and result.usdc_amount > 0 and quote_price > 0)
    actual_price = result.usdc_amount / result.token_amount if measured else quote_price
    slippage_pct = None
    slippage_cost = None
    if measured:
        if is_buy:
            slippage_pct = (actual_price - quote_price) / quote_price * 100
        else:
            slippage_pct = (quote_price - actual_price) / quote_price * 100
        expected_usdc = result.token_amount * quote_price
        slippage_cost = result.usdc_amount - expected_usdc if is_buy else expected_usdc - result.usdc_amount

    return {
        "id": uuid.uuid4().hex,
        "mint": quote.output_mint if is_buy else quote.input_mint,
        "side": result.side,
        "ts": time.time(),
        "trade_type": trade_type,
        "quote_price": quote_price,
        "actual_price": actual_price,
        "slippage_pct": slippage_pct,
        "slippage_cost_usdc": slippage_cost,
        "expected_slippage_pct": quote.slippage_bps / 100,
        "actual_fill": result.token_amount,
        "usdc_amount": result.usdc_amount,
        "fill_source": result.fill_source.value,
        "latency_ms": result.latency_ms,
        "fees": result.fee,
        "signature": result.signature or "",
        "success": 1 if result.success else 0,
        "error": result.error,
    }
