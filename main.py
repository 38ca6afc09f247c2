#!/usr/bin/env python3
"""
Bridge-Asset Currency Swap Engine

Finds and executes cross-exchange currency swaps routed through a liquid
bridge asset (XRP, XLM, TRX, LTC).

Usage:
    python main.py paths                      # List generated swap paths
    python main.py scan --prices prices.json  # Rank opportunities
    python main.py execute PATH_ID 1000       # Execute a path (paper)
    python main.py watch --ticks 4            # Rotate scans across bridges
    python main.py status                     # Show execution summary
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from bridgeswap.config import SwapSettings, get_config
from bridgeswap.logger import setup_logging, get_logger
from bridgeswap.database import get_ledger
from bridgeswap.errors import LimitExceeded, SwapError, ValidationError
from bridgeswap.models import ExecutionStatus, PathFilters
from bridgeswap.prices import PriceCache
from bridgeswap.service import SwapService
from bridgeswap.trading.adapter import AdapterRegistry
from bridgeswap.trading.paper_adapter import PaperExchangeAdapter
from bridgeswap.engine.opportunity_scanner import selection_for
from bridgeswap.engine.scan_scheduler import ScanScheduler

# Initialize
app = typer.Typer(
    name="bridgeswap",
    help="Bridge-Asset Currency Swap Engine",
    add_completion=False,
)
console = Console()
logger = None

_LIST_SETTINGS = {"selected_exchanges", "selected_currencies", "allowed_pairs"}

USER_OPTION = typer.Option("default", "--user", "-u", help="User whose settings apply")
PRICES_OPTION = typer.Option(None, "--prices", "-p", help="JSON price fixture")
BALANCES_OPTION = typer.Option(None, "--balances", "-b", help="JSON balance fixture")


def setup():
    """Initialize logging and configuration."""
    global logger
    setup_logging()
    logger = get_logger("main")


def _load_json(path: Optional[Path]) -> Dict:
    if path is None:
        return {}
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)


def build_service(
    user_id: str,
    prices: Optional[Path] = None,
    balances: Optional[Path] = None,
    transfers: bool = False,
) -> SwapService:
    """Wire a service over paper adapters fed by JSON fixtures."""
    config = get_config()
    if not config.is_paper_trading:
        console.print(
            "[red]Live trading needs exchange adapters registered in code; "
            "the CLI only runs paper adapters.[/red]"
        )
        raise typer.Exit(1)

    cache = PriceCache(max_age_seconds=config.risk.quote_freshness_seconds)
    price_data = _load_json(prices)
    if price_data:
        cache.load_json(price_data)
    balance_data = _load_json(balances)

    ledger = get_ledger()
    settings = ledger.get_settings(user_id)

    exchanges: List[str] = list(settings.selected_exchanges)
    for name in list(price_data) + list(balance_data):
        if name.lower() not in {e.lower() for e in exchanges}:
            exchanges.append(name)

    registry = AdapterRegistry()
    adapters = []
    for name in exchanges:
        adapter = PaperExchangeAdapter(
            name,
            cache,
            balances=balance_data.get(name, {}),
            supports_transfers=transfers,
        )
        for other in adapters:
            adapter.link(other)
        adapters.append(registry.register(adapter))

    return SwapService(cache, registry, ledger, config)


def _fail(error: SwapError) -> None:
    if isinstance(error, ValidationError):
        console.print("[red]Rejected:[/red]")
        for reason in error.reasons:
            console.print(f"  • {reason}")
    elif isinstance(error, LimitExceeded):
        console.print(f"[red]Limit reached:[/red] {error} ({error.remaining} remaining)")
    else:
        console.print(f"[red]Error: {error}[/red]")
    raise typer.Exit(1)


@app.command()
def paths(
    user: str = USER_OPTION,
    bridge: Optional[str] = typer.Option(None, "--bridge", help="Bridge asset or AUTO"),
    source_exchange: Optional[str] = typer.Option(None, "--from-exchange"),
    dest_exchange: Optional[str] = typer.Option(None, "--to-exchange"),
    source_asset: Optional[str] = typer.Option(None, "--from-asset"),
    dest_asset: Optional[str] = typer.Option(None, "--to-asset"),
    limit: int = typer.Option(50, "--limit", "-n", help="Number of paths to show"),
):
    """List the swap paths generated from the user's selection."""
    setup()

    service = build_service(user)
    settings = service.get_settings(user)
    filters = PathFilters(
        source_exchange=source_exchange,
        dest_exchange=dest_exchange,
        source_asset=source_asset,
        dest_asset=dest_asset,
    )

    shown = 0
    table = Table(title="🔀 Swap Paths", box=box.ROUNDED)
    table.add_column("Path ID", style="cyan")
    table.add_column("Hops", justify="right")
    table.add_column("Route")

    for bridge_asset in service.scanner.resolve_bridges(bridge or settings.preferred_bridge):
        selection = selection_for(settings, bridge_asset)
        for path in service.generator.get_filtered_paths(selection, filters):
            if shown >= limit:
                break
            table.add_row(path.id, str(len(path.hops)), path.description)
            shown += 1

    if not shown:
        console.print("[yellow]No paths. Select at least two exchanges and two currencies.[/yellow]")
        return
    console.print(table)

    for bridge_asset, stats in service.path_statistics(user, bridge).items():
        console.print(
            f"[dim]{bridge_asset}: {stats['total_paths']} paths over "
            f"{stats['total_exchanges']} exchanges x {stats['total_assets']} assets[/dim]"
        )


@app.command()
def scan(
    user: str = USER_OPTION,
    prices: Optional[Path] = PRICES_OPTION,
    bridge: Optional[str] = typer.Option(None, "--bridge", help="Bridge asset or AUTO"),
    amount: Optional[float] = typer.Option(None, "--amount", "-a", help="Notional in source units"),
    top: int = typer.Option(10, "--top", help="Number of opportunities to show"),
):
    """Scan every path against the cached prices and rank by profit."""
    setup()

    service = build_service(user, prices)
    try:
        result = asyncio.run(service.scan(user, bridge_asset=bridge, amount=amount))
    except SwapError as e:
        _fail(e)

    if not result.opportunities:
        console.print(f"[yellow]{result.message or 'No opportunities found'}[/yellow]")
        if result.skipped:
            console.print(f"[dim]{len(result.skipped)} paths skipped for missing prices[/dim]")
        return

    table = Table(title="💱 Swap Opportunities", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Path ID", style="cyan")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Profit", justify="right")
    table.add_column("Actionable")

    for i, opportunity in enumerate(result.opportunities[:top], start=1):
        style = "green" if opportunity.is_profitable else "red"
        table.add_row(
            str(i),
            opportunity.path.id,
            f"{opportunity.initial_amount:.4f}",
            f"{opportunity.final_amount:.4f}",
            f"{opportunity.effective_rate:.6f}",
            f"[{style}]{opportunity.profit_percent:+.4f}%[/{style}]",
            "✅" if opportunity.is_actionable else "",
        )

    console.print(table)
    console.print(
        f"[dim]Scanned {result.scanned_paths}/{result.total_possible_paths} paths, "
        f"{len(result.skipped)} skipped, bridges: {', '.join(result.bridge_assets)}[/dim]"
    )


@app.command()
def risk(
    path_id: str = typer.Argument(..., help="Path id to assess"),
    user: str = USER_OPTION,
    prices: Optional[Path] = PRICES_OPTION,
    balances: Optional[Path] = BALANCES_OPTION,
):
    """Assess a path's risk and safe trade size."""
    setup()

    service = build_service(user, prices, balances)
    try:
        assessment = asyncio.run(service.assess_risk(user, path_id))
    except SwapError as e:
        _fail(e)

    verdict = "[green]Can proceed[/green]" if assessment.can_proceed else "[red]Blocked[/red]"
    lines = [
        f"Path: {assessment.path.description}",
        f"Max safe amount: {assessment.max_safe_amount:.4f} {assessment.path.source_asset}",
        f"Reserve: {assessment.reserve_amount:.4f}",
        f"Running swaps: {assessment.concurrent_trade_count}",
        f"Today: {assessment.daily.daily_count}/{assessment.daily.max_daily}",
        f"Verdict: {verdict}",
    ]
    for warning in assessment.warnings:
        lines.append(f"  [{warning.severity}] {warning.type}: {warning.message}")

    console.print(Panel.fit("\n".join(lines), title="🛡️ Risk Assessment", border_style="blue"))


@app.command()
def size(
    exchange: str = typer.Argument(...),
    asset: str = typer.Argument(...),
    user: str = USER_OPTION,
    balances: Optional[Path] = BALANCES_OPTION,
):
    """Show the recommended trade size for one balance."""
    setup()

    service = build_service(user, balances=balances)
    try:
        sizing = asyncio.run(service.recommended_amount(user, exchange, asset.upper()))
    except SwapError as e:
        _fail(e)

    table = Table(title=f"📏 {sizing.asset} on {sizing.exchange}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Available", f"{sizing.available_balance:.4f}")
    table.add_row("Reserve", f"{sizing.reserve_amount:.4f}")
    table.add_row("Max by balance", f"{sizing.max_by_balance:.4f}")
    table.add_row("Max by percentage", f"{sizing.max_by_percentage:.4f}")
    table.add_row("Max by limit", f"{sizing.max_by_limit:.4f}")
    table.add_row("Recommended", f"{sizing.recommended_amount:.4f}")
    table.add_row("Binding constraint", sizing.constraint)
    console.print(table)


@app.command()
def routes(
    source_exchange: str = typer.Argument(...),
    source_asset: str = typer.Argument(...),
    dest_exchange: str = typer.Argument(...),
    dest_asset: str = typer.Argument(...),
    bridge: str = typer.Option("AUTO", "--bridge"),
):
    """List every bridge route between two endpoints."""
    setup()

    service = build_service("default")
    try:
        found = service.find_all_routes(source_exchange, source_asset, dest_exchange, dest_asset, bridge)
    except SwapError as e:
        _fail(e)

    for path in found:
        console.print(f"[cyan]{path.id}[/cyan]  {path.description}")


@app.command()
def execute(
    path_id: str = typer.Argument(..., help="Path id from `scan`"),
    amount: float = typer.Argument(..., help="Amount of the source asset to spend"),
    user: str = USER_OPTION,
    prices: Optional[Path] = PRICES_OPTION,
    balances: Optional[Path] = BALANCES_OPTION,
    execution_id: Optional[str] = typer.Option(None, "--id", help="Idempotency key"),
    transfers: bool = typer.Option(False, "--transfers", help="Simulate bridge withdrawals"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Execute a swap path with paper adapters."""
    setup()

    service = build_service(user, prices, balances, transfers)

    if not yes:
        confirm = typer.confirm(f"Execute {path_id} with {amount}?", default=False)
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    try:
        outcome = asyncio.run(service.execute(user, path_id, amount, execution_id=execution_id))
    except SwapError as e:
        _fail(e)

    execution = outcome.execution
    table = Table(title=f"⚡ Execution {execution.id}", box=box.ROUNDED)
    table.add_column("Step", justify="right")
    table.add_column("Kind")
    table.add_column("Exchange", style="cyan")
    table.add_column("Pair")
    table.add_column("Side")
    table.add_column("Requested", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Status")

    for step in execution.step_results:
        status_str = "[green]ok[/green]" if step.succeeded else f"[red]{step.error_kind}[/red]"
        table.add_row(
            str(step.index),
            step.kind,
            step.exchange,
            step.pair or step.from_asset,
            step.side or "",
            f"{step.requested_amount:.6f}",
            f"{step.received_amount:.6f}",
            status_str,
        )
    console.print(table)

    style = "green" if outcome.success else "red"
    console.print(
        f"[{style}]{execution.status.value}[/{style}] "
        f"final {execution.final_amount:.6f} {execution.path.dest_asset}, "
        f"profit {execution.profit:+.6f} ({execution.profit_percent:+.4f}%)"
    )
    if execution.stranded:
        console.print(
            f"[red]Stranded: {execution.stranded.amount:.6f} {execution.stranded.asset} "
            f"on {execution.stranded.exchange}[/red]"
        )
        for hop in service.unwind_plan(execution.id):
            console.print(f"  unwind: {hop.side.value} {hop.pair} on {hop.exchange}")

    if not outcome.success:
        raise typer.Exit(1)


@app.command()
def limits(user: str = USER_OPTION):
    """Show the daily and concurrency limits."""
    setup()

    service = build_service(user)
    limit_status = service.daily_limit_status(user)

    table = Table(title="🚦 Limits", box=box.ROUNDED)
    table.add_column("Limit", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Max", justify="right")
    table.add_row("Swaps today", str(limit_status.daily_count), str(limit_status.max_daily))
    table.add_row("Running", str(limit_status.active_count), str(limit_status.max_concurrent))
    console.print(table)

    if limit_status.can_execute:
        console.print(f"[green]{limit_status.remaining} swaps remaining today[/green]")
    else:
        console.print("[red]No swaps can start right now[/red]")


@app.command()
def status(user: Optional[str] = typer.Option(None, "--user", "-u")):
    """Show the execution summary."""
    setup()

    summary = get_ledger().get_performance_summary(user)

    table = Table(title="📊 Execution Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total Executions", str(summary.get("total_executions", 0)))
    table.add_row("Completed", str(summary.get("completed", 0)))
    table.add_row("Failed", str(summary.get("failed", 0)))
    table.add_row("Partially Failed", str(summary.get("partially_failed", 0)))
    table.add_row("Running", str(summary.get("active", 0)))
    table.add_row("Success Rate", f"{summary.get('success_rate', 0):.1%}")
    table.add_row("Total Profit", f"{summary.get('total_profit', 0):+.4f}")
    table.add_row("Total Volume", f"{summary.get('total_volume', 0):.4f}")

    console.print(table)


@app.command()
def history(
    user: Optional[str] = typer.Option(None, "--user", "-u"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of executions to show"),
    status_filter: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """Show recent executions."""
    setup()

    status_value = None
    if status_filter:
        try:
            status_value = ExecutionStatus(status_filter.lower())
        except ValueError:
            console.print(f"[red]Unknown status: {status_filter}[/red]")
            raise typer.Exit(1)

    executions = get_ledger().list_executions(user_id=user, status=status_value, limit=limit)
    if not executions:
        console.print("[dim]No executions found[/dim]")
        return

    table = Table(title="📜 Execution History", box=box.ROUNDED)
    table.add_column("Time", style="dim")
    table.add_column("Path", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Final", justify="right")
    table.add_column("Profit", justify="right")
    table.add_column("Status")

    for execution in executions:
        style = "green" if execution.profit >= 0 else "red"
        table.add_row(
            execution.started_at.strftime("%m/%d %H:%M"),
            execution.path.id,
            f"{execution.amount:.4f}",
            f"{execution.final_amount:.4f}",
            f"[{style}]{execution.profit_percent:+.4f}%[/{style}]",
            execution.status.value,
        )

    console.print(table)


@app.command()
def config(
    user: str = USER_OPTION,
    set_values: Optional[List[str]] = typer.Option(
        None, "--set", help="Update a setting, e.g. --set selected_exchanges=VALR,LUNO"
    ),
):
    """Show configuration and the user's swap settings."""
    setup()

    cfg = get_config()
    ledger = get_ledger()

    if set_values:
        changes = {}
        for item in set_values:
            key, sep, value = item.partition("=")
            if not sep or key not in SwapSettings.model_fields:
                console.print(f"[red]Unknown setting: {item}[/red]")
                raise typer.Exit(1)
            changes[key] = (
                [v.strip() for v in value.split(",") if v.strip()]
                if key in _LIST_SETTINGS
                else value
            )
        service = build_service(user)
        try:
            service.update_settings(user, **changes)
        except SwapError as e:
            _fail(e)

    settings = ledger.get_settings(user)

    console.print(Panel.fit(
        f"[bold]Bridges[/bold]\n"
        f"  Assets: {', '.join(cfg.bridge.assets)}\n"
        f"  Withdrawal fees: {cfg.fees.withdrawal_fees}\n\n"
        f"[bold]Fees[/bold]\n"
        f"  Default: {cfg.fees.default_fee_percent}%\n"
        f"  Per exchange: {cfg.fees.exchange_fees or 'none'}\n\n"
        f"[bold]Execution[/bold]\n"
        f"  Hop timeout: {cfg.execution.hop_timeout_seconds}s\n"
        f"  Deposit timeout: {cfg.execution.deposit_timeout_seconds}s\n"
        f"  Order type: {cfg.execution.order_type}\n\n"
        f"[bold]Swap Settings ({user})[/bold]\n"
        f"  Exchanges: {', '.join(settings.selected_exchanges) or 'none'}\n"
        f"  Currencies: {', '.join(settings.selected_currencies) or 'none'}\n"
        f"  Preferred bridge: {settings.preferred_bridge}\n"
        f"  Threshold: {settings.threshold_percent}%\n"
        f"  Max trade amount: {settings.max_trade_amount}\n"
        f"  Max balance: {settings.max_balance_percentage}% (reserve {settings.min_balance_reserve_percent}%)\n"
        f"  Limits: {settings.max_concurrent_trades} concurrent, {settings.daily_swap_limit}/day\n"
        f"  Scan interval: {settings.scan_interval_seconds}s\n\n"
        f"[bold]Mode[/bold]\n"
        f"  Paper Trading: {'Yes' if cfg.development.paper_trading else 'No'}\n"
        f"  Debug Mode: {'Yes' if cfg.development.debug_mode else 'No'}",
        title="⚙️ Configuration",
        border_style="blue",
    ))


@app.command()
def watch(
    user: str = USER_OPTION,
    prices: Optional[Path] = PRICES_OPTION,
    ticks: int = typer.Option(4, "--ticks", help="Number of bridge scans to run"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between scans"),
):
    """Rotate scans across the configured bridges."""
    setup()

    service = build_service(user, prices)
    scheduler = ScanScheduler(service.scanner, user, interval_seconds=interval)

    async def rotate():
        stop = asyncio.Event()
        await scheduler.run(stop, max_ticks=ticks)

    try:
        asyncio.run(rotate())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")

    table = Table(title="🔁 Bridge Rotation", box=box.ROUNDED)
    table.add_column("Bridge", style="cyan")
    table.add_column("Paths", justify="right")
    table.add_column("Best Path")
    table.add_column("Best Profit", justify="right")

    for bridge, info in scheduler.status()["bridge_results"].items():
        profit = info["best_profit_percent"]
        table.add_row(
            bridge,
            str(info["scanned_paths"]),
            info["best_path"] or "-",
            f"{profit:+.4f}%" if profit is not None else "-",
        )
    console.print(table)

    best = scheduler.best_result()
    if best:
        console.print(
            f"🏆 Best: {best.result.best.profit_percent:+.4f}% via {best.bridge} "
            f"({best.result.best.path.id})"
        )


@app.command()
def version():
    """Show version information."""
    from bridgeswap import __version__

    console.print(Panel.fit(
        f"[bold]Bridge-Asset Currency Swap Engine[/bold]\n"
        f"Version: {__version__}\n"
        f"Python: {sys.version.split()[0]}",
        border_style="blue",
    ))


if __name__ == "__main__":
    app()
