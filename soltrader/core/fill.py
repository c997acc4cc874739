"""Actual-fill reconciliation from ledger balance deltas.

Quoted amounts are estimates. After confirmation the wallet's own balance
changes are the ground truth for what was spent and received.

Known bias: ``meta.fee`` is the base fee only. Priority fees and bundle tips
paid from the same wallet are not in it, so ``Fill.fee`` undercounts them.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from soltrader.data.models import FillSource, ParsedTransaction, Quote, TokenBalance, raw_to_human


@dataclass
class Fill:
    usdc_amount: float
    token_amount: float
    token_amount_raw: int
    fee: float
    source: FillSource


def wallet_mint_deltas(pre: List[TokenBalance], post: List[TokenBalance], wallet: str) -> Dict[str, int]:
    """Signed raw deltas per mint, summed over the wallet's own token accounts.

    Keyed by account index first since several accounts can hold the same mint.
    Entries without an owner are skipped: ownership can't be confirmed.
    """
    pre_by_idx = {b.account_index: b for b in pre}
    post_by_idx = {b.account_index: b for b in post}
    deltas: Dict[str, int] = {}
    for idx in set(pre_by_idx) | set(post_by_idx):
        before = pre_by_idx.get(idx)
        after = post_by_idx.get(idx)
        ref = after or before
        owner = after.owner if after is not None and after.owner is not None else None
        if owner is None and before is not None:
            owner = before.owner
        if owner != wallet:
            continue
        delta = (after.amount if after else 0) - (before.amount if before else 0)
        if delta == 0:
            continue
        deltas[ref.mint] = deltas.get(ref.mint, 0) + delta
    return deltas


def quote_fill(quote: Quote, is_buy: bool, quote_decimals: int) -> Fill:
    usdc_raw = quote.in_amount if is_buy else quote.out_amount
    token_raw = quote.out_amount if is_buy else quote.in_amount
    token_decimals = quote.output_decimals if is_buy else quote.input_decimals
    return Fill(
        usdc_amount=raw_to_human(usdc_raw, quote_decimals),
        token_amount=raw_to_human(token_raw, token_decimals),
        token_amount_raw=token_raw,
        fee=0.0,
        source=FillSource.QUOTE_FALLBACK,
    )


def reconcile_fill(tx: Optional[ParsedTransaction], quote: Quote, wallet: str, is_buy: bool,
                   quote_mint: str, quote_decimals: int, native_mint: str, native_decimals: int) -> Fill:
    fill = quote_fill(quote, is_buy, quote_decimals)
    if tx is None:
        return fill

    token_mint = quote.output_mint if is_buy else quote.input_mint
    token_decimals = quote.output_decimals if is_buy else quote.input_decimals

    wallet_idx = tx.account_keys.index(wallet) if wallet in tx.account_keys else -1
    if wallet_idx >= 0:
        fill.fee = raw_to_human(tx.fee, native_decimals)

    deltas = wallet_mint_deltas(tx.pre_token_balances, tx.post_token_balances, wallet)

    # sign only encodes direction
    usdc_delta = deltas.get(quote_mint, 0)
    if usdc_delta:
        fill.usdc_amount = raw_to_human(abs(usdc_delta), quote_decimals)

    token_delta = deltas.get(token_mint, 0)
    if token_delta:
        fill.token_amount_raw = abs(token_delta)
        fill.token_amount = raw_to_human(fill.token_amount_raw, token_decimals)

    # native asset moves in lamport balances, not token balances
    native_detected = False
    if token_mint == native_mint and 0 <= wallet_idx < min(len(tx.pre_balances), len(tx.post_balances)):
        lamport_delta = tx.post_balances[wallet_idx] - tx.pre_balances[wallet_idx]
        # buy:  post = pre + received - fee  ->  received = delta + fee
        # sell: post = pre - sent - fee      ->  sent = -delta - fee
        native_raw = lamport_delta + tx.fee if is_buy else -lamport_delta - tx.fee
        if native_raw > 0:
            fill.token_amount_raw = native_raw
            fill.token_amount = raw_to_human(native_raw, native_decimals)
            native_detected = True

    if usdc_delta and (token_delta or native_detected):
        fill.source = FillSource.ONCHAIN
    return fill
