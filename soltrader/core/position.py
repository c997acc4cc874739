import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

OPEN = "open"
CLOSED = "closed"

@dataclass
class ExitPlan:
    """Fixed stop/target for positions that skip the tiered exit rules."""
    stop_loss_pct: float        # positive, e.g. 10 => exit at -10%
    take_profit_pct: float      # positive, e.g. 25 => exit at +25%

@dataclass
class PositionExit:
    type: str
    sell_pct: float
    tokens_sold: float
    usdc_received: float
    price: float
    timestamp: float
    signature: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

@dataclass
class Position:
    mint: str
    entry_price: float          # USDC per token
    initial_size_usdc: float
    initial_tokens: float
    entry_signature: str = ""
    id: str = field(default_factory=lambda: f"pos-{uuid.uuid4().hex[:12]}")
    entry_time: float = field(default_factory=time.time)
    remaining_tokens: Optional[float] = None
    remaining_usdc: Optional[float] = None
    remaining_pct: float = 100.0
    current_price: float = 0.0
    current_pnl_pct: float = 0.0
    peak_pnl_pct: float = 0.0
    tp1_hit: bool = False
    tp2_hit: bool = False
    stop_moved_to_breakeven: bool = False
    exits: List[PositionExit] = field(default_factory=list)
    status: str = OPEN
    close_reason: Optional[str] = None
    plan: Optional[ExitPlan] = None

    def __post_init__(self):
        if self.remaining_tokens is None:
            self.remaining_tokens = self.initial_tokens
        if self.remaining_usdc is None:
            self.remaining_usdc = self.remaining_tokens * self.entry_price
        if not self.current_price:
            self.current_price = self.entry_price

    @property
    def is_open(self) -> bool:
        return self.status == OPEN

    def mark_price(self, price: float):
        self.current_price = price
        if self.entry_price > 0:
            self.current_pnl_pct = (price - self.entry_price) / self.entry_price * 100
        # high-water mark only moves up
        if self.current_pnl_pct > self.peak_pnl_pct:
            self.peak_pnl_pct = self.current_pnl_pct
        self.remaining_usdc = self.remaining_tokens * price

    def apply_sell(self, tokens_sold: float):
        self.remaining_tokens = max(0.0, self.remaining_tokens - tokens_sold)
        self.remaining_usdc = self.remaining_tokens * self.current_price
        self.remaining_pct = (self.remaining_tokens / self.initial_tokens * 100) if self.initial_tokens > 0 else 0.0

    def tokens_sold(self) -> float:
        return sum(e.tokens_sold for e in self.exits if e.success)

    def realized_usdc(self) -> float:
        return sum(e.usdc_received for e in self.exits if e.success)

    def realized_pnl_usdc(self) -> float:
        return self.realized_usdc() - self.initial_size_usdc

    def cost_basis_remaining(self) -> float:
        if self.initial_tokens <= 0:
            return 0.0
        return self.remaining_tokens / self.initial_tokens * self.initial_size_usdc

    def hold_minutes(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return (now - self.entry_time) / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        exit_fields = {f.name for f in fields(PositionExit)}
        kwargs["exits"] = [PositionExit(**{k: v for k, v in e.items() if k in exit_fields})
                           for e in data.get("exits") or []]
        if data.get("plan"):
            kwargs["plan"] = ExitPlan(**data["plan"])
        return cls(**kwargs)
