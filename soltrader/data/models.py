"""Typed records for swap API and ledger RPC payloads.

Every ``from_json`` validates the shape it needs and raises ``DecodeError`` on
anything malformed instead of coercing it to a default.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DecodeError(ValueError):
    """External payload did not have the expected shape."""


class RpcError(Exception):
    def __init__(self, method: str, code: Optional[int], message: str):
        super().__init__(f"{method}: {message} ({code})")
        self.method = method
        self.code = code


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"{where}: expected object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise DecodeError(f"{where}: missing '{key}'")
    return data[key]

def _raw_int(value: Any, where: str) -> int:
    # raw amounts travel as decimal strings
    if isinstance(value, bool):
        raise DecodeError(f"{where}: bool is not an amount")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise DecodeError(f"{where}: not an integer amount: {value!r}")

def _float(value: Any, where: str) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DecodeError(f"{where}: not a number: {value!r}")

def raw_to_human(raw: int, decimals: int) -> float:
    return raw / (10 ** decimals)

def human_to_raw(amount: float, decimals: int) -> int:
    return int(amount * (10 ** decimals))


@dataclass
class RouteStep:
    label: str
    percent: float


@dataclass
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int                 # raw smallest units
    out_amount: int                # raw smallest units
    input_decimals: int
    output_decimals: int
    price_impact_pct: float
    route_plan: List[RouteStep]
    slippage_bps: int
    raw: Dict[str, Any] = field(repr=False, default_factory=dict)   # echoed back to the swap endpoint

    @property
    def in_human(self) -> float:
        return raw_to_human(self.in_amount, self.input_decimals)

    @property
    def out_human(self) -> float:
        return raw_to_human(self.out_amount, self.output_decimals)

    @classmethod
    def from_json(cls, data: Dict[str, Any], input_decimals: int, output_decimals: int,
                  slippage_bps: int) -> "Quote":
        where = "quote"
        route_plan = []
        for i, step in enumerate(data.get("routePlan") or []):
            info = _require(step, "swapInfo", f"{where}.routePlan[{i}]")
            route_plan.append(RouteStep(
                label=str(info.get("label") or "?"),
                percent=_float(step.get("percent"), f"{where}.routePlan[{i}].percent"),
            ))
        return cls(
            input_mint=str(_require(data, "inputMint", where)),
            output_mint=str(_require(data, "outputMint", where)),
            in_amount=_raw_int(_require(data, "inAmount", where), f"{where}.inAmount"),
            out_amount=_raw_int(_require(data, "outAmount", where), f"{where}.outAmount"),
            input_decimals=input_decimals,
            output_decimals=output_decimals,
            # Jupiter reports impact as a percentage string
            price_impact_pct=_float(data.get("priceImpactPct"), f"{where}.priceImpactPct"),
            route_plan=route_plan,
            slippage_bps=int(slippage_bps),
            raw=data,
        )


@dataclass
class SwapPayload:
    swap_transaction: str          # base64 unsigned transaction

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SwapPayload":
        tx = _require(data, "swapTransaction", "swap")
        if not isinstance(tx, str) or not tx:
            raise DecodeError("swap: swapTransaction must be a non-empty base64 string")
        return cls(swap_transaction=tx)


@dataclass
class TokenBalance:
    account_index: int
    mint: str
    owner: Optional[str]
    amount: int                    # raw

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TokenBalance":
        where = "tokenBalance"
        idx = _require(data, "accountIndex", where)
        if not isinstance(idx, int) or isinstance(idx, bool):
            raise DecodeError(f"{where}: accountIndex must be an int")
        ui = data.get("uiTokenAmount") or {}
        amount = ui.get("amount")
        return cls(
            account_index=idx,
            mint=str(_require(data, "mint", where)),
            owner=data.get("owner"),
            amount=_raw_int(amount, f"{where}.uiTokenAmount.amount") if amount is not None else 0,
        )


@dataclass
class ParsedTransaction:
    signature: str
    account_keys: List[str]
    fee: int                       # lamports, base fee only
    err: Any
    pre_balances: List[int]
    post_balances: List[int]
    pre_token_balances: List[TokenBalance]
    post_token_balances: List[TokenBalance]

    @classmethod
    def from_json(cls, signature: str, data: Dict[str, Any]) -> "ParsedTransaction":
        where = "transaction"
        meta = _require(data, "meta", where)
        tx = _require(data, "transaction", where)
        message = _require(tx, "message", f"{where}.transaction")
        keys = []
        for k in message.get("accountKeys") or []:
            # jsonParsed gives objects, json encoding gives bare strings
            keys.append(k["pubkey"] if isinstance(k, dict) else str(k))
        return cls(
            signature=signature,
            account_keys=keys,
            fee=_raw_int(meta.get("fee", 0), f"{where}.meta.fee"),
            err=meta.get("err"),
            pre_balances=[_raw_int(b, f"{where}.meta.preBalances") for b in meta.get("preBalances") or []],
            post_balances=[_raw_int(b, f"{where}.meta.postBalances") for b in meta.get("postBalances") or []],
            pre_token_balances=[TokenBalance.from_json(b) for b in meta.get("preTokenBalances") or []],
            post_token_balances=[TokenBalance.from_json(b) for b in meta.get("postTokenBalances") or []],
        )


@dataclass
class SimulationResult:
    err: Any
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SimulationResult":
        value = _require(data, "value", "simulation")
        return cls(err=value.get("err"), logs=list(value.get("logs") or []),
                   units_consumed=value.get("unitsConsumed"))


class FillSource(str, Enum):
    ONCHAIN = "onchain"
    QUOTE_FALLBACK = "quote_fallback"
    SIMULATED = "simulated"
    NOT_EXECUTED = "not_executed"


@dataclass
class SwapResult:
    success: bool
    side: str                      # "buy" | "sell"
    usdc_amount: float             # quote-currency leg, human units
    token_amount: float            # traded-asset leg, human units
    token_amount_raw: int
    price_impact_pct: float = 0.0
    fee: float = 0.0               # native units, base fee only
    latency_ms: int = 0
    fill_source: FillSource = FillSource.NOT_EXECUTED
    signature: Optional[str] = None
    error: Optional[str] = None
