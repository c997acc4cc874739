import asyncio
import time
from typing import Optional

from soltrader.core.manager import PositionManager
from soltrader.utils.db import init_db
from soltrader.utils.logging_utils import jlog


class Bot:
    def __init__(self, cfg, logger, manager: PositionManager, executor, market, clock=time.time):
        self.cfg = cfg
        self.logger = logger
        self.manager = manager
        self.executor = executor
        self.market = market
        self.clock = clock
        self._stop = asyncio.Event()
        self._day: Optional[str] = None
        self._closed = False

    async def start(self):
        await init_db(self.cfg)
        restored = await self.manager.resume()
        await self.manager.init_portfolio()
        self._day = self.manager.today()
        state = self.manager.portfolio_state()
        jlog(self.logger, "START", mode=self.cfg.mode, restored=restored,
             equity_usdc=round(state.equity_usdc, 2))

    async def tick(self):
        """One monitoring cycle; a new UTC date closes out the previous day first."""
        today = self.manager.today()
        if self._day and today != self._day:
            jlog(self.logger, "DAY_ROLLOVER", previous=self._day, today=today)
            await self.manager.roll_day(self._day)
        self._day = today
        await self.manager.update_positions()

    async def run(self):
        await self.start()
        b = self.cfg.bot
        await self.manager.check_native_replenish()
        last_save = last_replenish = self.clock()
        try:
            while not self._stop.is_set():
                await self.tick()
                now = self.clock()
                if now - last_save >= b.save_interval_sec:
                    self.manager.save()
                    last_save = now
                if now - last_replenish >= b.replenish_interval_sec:
                    await self.manager.check_native_replenish()
                    last_replenish = now
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=b.update_interval_sec)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.graceful_shutdown()

    def stop(self):
        self._stop.set()

    async def graceful_shutdown(self):
        self._stop.set()
        if self._closed:
            return
        self._closed = True
        self.manager.save()
        await self.executor.close()
        await self.market.close()
        jlog(self.logger, "STOPPED", open=len(self.manager.open_positions),
             closed=len(self.manager.closed_positions))
