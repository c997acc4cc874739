from dataclasses import dataclass, field
from typing import Dict

@dataclass
class PortfolioState:
    equity_usdc: float          # day start equity + realized + unrealized
    open_positions: int
    open_exposure_usdc: float
    daily_pnl_pct: float
    consecutive_losses: int
    last_loss_time: float
    stopped_out_tokens: Dict[str, float] = field(default_factory=dict)   # mint -> loss timestamp
    reserved_usdc: float = 0.0
