# main.py
import argparse
import asyncio
import sys
import time
from typing import Dict, List

import questionary
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from dexarb.advisor import LlmGuidanceSource, StaticGuidanceSource
from dexarb.config import ConfigError, EngineConfig, load_config
from dexarb.cross_venue import CrossVenueMonitor
from dexarb.execution import ExecutionService
from dexarb.gateway import HttpSwapGateway
from dexarb.logger import AsyncAuditLogger, setup_console_logger
from dexarb.quote_engine import QuoteEngine
from dexarb.risk_engine import RiskEngine, RiskNotifier
from dexarb.strategy import BaseStrategy, SpiderStrategy, TriangularStrategy

STRATEGY_CHOICES = [SpiderStrategy.name, TriangularStrategy.name]

# --- UI HELPER FUNCTIONS ---

def startup_selection(config: EngineConfig) -> List[str]:
    """Interactive CLI to pick which strategies run."""
    print("\n🕷️ DEX POOL SPIDER \n")
    chosen = questionary.checkbox("Select strategies to run:", choices=STRATEGY_CHOICES).ask()
    if not chosen:
        print("No strategies selected. Exiting.")
        sys.exit()

    if not config.system.dry_run:
        live_ok = questionary.confirm("dry_run is OFF. Trade with real funds?", default=False).ask()
        if not live_ok:
            print("Aborted. Set system.dry_run: true to paper trade.")
            sys.exit()
    return chosen


def generate_dashboard(strategies: List[BaseStrategy], risk: RiskEngine, dry_run: bool):
    """
    Builds the Rich layout: open spider positions plus the last result per strategy.
    """
    pos_table = Table(title="🕸️ Open Positions")
    pos_table.add_column("Pool", style="cyan")
    pos_table.add_column("Invested", justify="right")
    pos_table.add_column("Held", justify="right")
    pos_table.add_column("Entry", justify="right")
    pos_table.add_column("Age", justify="right")
    pos_table.add_column("State", style="magenta")

    for strategy in strategies:
        if not isinstance(strategy, SpiderStrategy):
            continue
        for p in strategy.positions.positions.values():
            pos_table.add_row(p.pool_key, f"{p.invested:.2f}", f"{p.received:.6f}",
                              f"{p.entry_price:.6f}", f"{p.age / 60:.1f}m", p.state.value)
        for p in strategy.positions.stuck_positions():
            pos_table.add_row(p.pool_key, f"{p.invested:.2f}", f"{p.received:.6f}",
                              f"{p.entry_price:.6f}", f"{p.age / 60:.1f}m", f"[red]{p.state.value}[/red]")

    res_table = Table(title="📊 Last Cycle")
    res_table.add_column("Strategy", style="cyan")
    res_table.add_column("OK")
    res_table.add_column("Profit", justify="right", style="green")
    res_table.add_column("Volume", justify="right")
    res_table.add_column("Detail")

    for strategy in strategies:
        r = strategy.last_result
        if r is None:
            res_table.add_row(strategy.name, "-", "-", "-", "waiting")
            continue
        detail = r.descriptor if r.success else f"[yellow]{r.error or r.descriptor}[/yellow]"
        res_table.add_row(strategy.name, "✅" if r.success else "❌", f"{r.profit:.4f}", f"{r.volume:.2f}", detail)

    layout = Layout()
    layout.split_column(Layout(name="top"), Layout(name="bottom"))
    layout["top"].split_row(Layout(Panel(pos_table)), Layout(Panel(res_table)))

    mode = "DRY RUN" if dry_run else "LIVE"
    kill = " | [red]KILL SWITCH[/red]" if risk.kill_switch else ""
    footer = Panel(f"[bold gold1]{mode} | Daily PnL: {risk.daily_pnl:.4f} | Exposure: {risk.total_exposure:.2f}{kill}[/bold gold1]",
                   style="white on blue")
    layout["bottom"].update(footer)
    layout["bottom"].size = 3
    return layout

# --- MAIN CONTROLLER ---

class SpiderBot:
    def __init__(self, config: EngineConfig, selected: List[str]):
        self.config = config
        self.selected = selected
        self.logger = setup_console_logger("DexSpider", config.system.log_level)
        self.audit_log = AsyncAuditLogger(config.audit.trade_log)

        self.gateway = HttpSwapGateway(config.gateway, self.logger)
        self.quotes = QuoteEngine(self.gateway, config.quotes, self.logger)
        self.execution = ExecutionService(self.gateway, self.logger, config.system.dry_run,
                                          config.gateway.wallet_address)
        self.risk = RiskEngine(config.risk, self.logger)
        self.notifier = RiskNotifier(self.risk, self.logger, config.risk.notification_queue_size)

        self.advisor = None
        if config.guidance.static_label:
            self.advisor = StaticGuidanceSource(config.guidance.static_label)
        elif config.guidance.enabled:
            self.advisor = LlmGuidanceSource(config.guidance, self.logger)

        self.cross_venue = CrossVenueMonitor(config.cross_venue, self.logger) if config.cross_venue.enabled else None
        self.strategies = self._build_strategies()

    def _build_strategies(self) -> List[BaseStrategy]:
        built: Dict[str, BaseStrategy] = {}
        if SpiderStrategy.name in self.selected:
            built[SpiderStrategy.name] = SpiderStrategy(
                self.config, self.quotes, self.execution, self.risk, self.notifier, self.logger,
                guidance_source=self.advisor, cross_venue=self.cross_venue, audit_logger=self.audit_log,
            )
        if TriangularStrategy.name in self.selected:
            built[TriangularStrategy.name] = TriangularStrategy(
                self.config, self.quotes, self.execution, self.logger, audit_logger=self.audit_log,
            )
        return list(built.values())

    async def run_once(self):
        market = self.config.market
        active = [s for s in self.strategies if s.should_activate(market.volume, market.volatility)]
        # Strategies own disjoint state; they only share the gateway
        await asyncio.gather(*(s.execute() for s in active))

    async def run(self):
        try:
            await self.audit_log.start()
            self.notifier.start()

            console = Console()
            with Live(console=console, refresh_per_second=4) as live:
                # A tripped kill switch only blocks entries; exits keep running and
                # the switch clears at the next UTC day
                while True:
                    start_tick = time.time()
                    self.risk.roll_day()
                    await self.run_once()
                    live.update(generate_dashboard(self.strategies, self.risk, self.config.system.dry_run))

                    elapsed = time.time() - start_tick
                    await asyncio.sleep(max(0, self.config.system.cycle_interval_seconds - elapsed))
        finally:
            print("Shutting down resources...")
            await self.notifier.stop()
            await self.audit_log.stop()
            await self.quotes.shutdown()
            if isinstance(self.advisor, LlmGuidanceSource):
                await self.advisor.close()
            if self.cross_venue is not None:
                await self.cross_venue.shutdown()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="DEX pool spider and triangular arbitrage engine")
    parser.add_argument("--config", default="config.yaml", help="Path to the YAML config")
    parser.add_argument("--strategy", action="append", choices=STRATEGY_CHOICES,
                        help="Run without the interactive prompt (repeatable)")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)

    try:
        selected = args.strategy or startup_selection(cfg)
        bot = SpiderBot(cfg, selected)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()
