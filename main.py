#!/usr/bin/env python3
"""opswatch - CLI Entry Point."""
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()

SEVERITY_STYLES = {
    "emergency": "bold white on red",
    "critical": "bold red",
    "warning": "yellow",
    "info": "blue",
}

OUTCOME_STYLES = {
    "success": "green",
    "partial": "yellow",
    "failure": "red",
    "pending": "dim",
}


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config
    from models.database import AuditStore
    from monitor.engine import MonitoringEngine

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    db = AuditStore(config["database"]["path"])
    db.connect()

    engine = MonitoringEngine(config, store=db)
    return {"config": config, "db": db, "engine": engine}


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="opswatch")
@click.pass_context
def cli(ctx, config_path, verbose):
    """opswatch - Real-time monitoring, alerting and automated decisions."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _severity(value):
    style = SEVERITY_STYLES.get(value, "")
    return f"[{style}]{value}[/{style}]" if style else value


# ──────────────────────────────────────────────────────
# MONITORING
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--duration", default=0, type=int, help="Stop after N seconds (0 = until Ctrl+C)")
@click.pass_context
def run(ctx, duration):
    """Run the monitoring loop in the foreground."""
    c = _get_components(ctx)
    engine = c["engine"]
    monitor_cfg = c["config"]["monitor"]

    console.print(f"[bold]opswatch {__version__}[/bold] monitoring "
                  f"{len(engine.get_metrics())} metrics "
                  f"(tick {monitor_cfg['tick_interval']}s, decisions {monitor_cfg['decision_interval']}s)")
    console.print("Press Ctrl+C to stop.\n")

    engine.start()
    started = time.time()
    try:
        while duration <= 0 or time.time() - started < duration:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
        c["db"].close()
    console.print("[dim]Stopped.[/dim]")


@cli.command()
@click.pass_context
def check(ctx):
    """Run one monitoring tick and one decision pass, then report."""
    c = _get_components(ctx)
    engine = c["engine"]

    engine.run_tick()
    executions = engine.process_decisions() or []

    open_alerts = [a for a in engine.get_alerts() if a.is_open]
    if open_alerts:
        console.print(f"[bold yellow]{len(open_alerts)} open alert(s):[/bold yellow]")
        for a in open_alerts:
            console.print(f"  [{_severity(a.severity.value)}] {a.title}: {a.description}")
    else:
        console.print("[green]All clear - no open alerts[/green]")

    for e in executions:
        style = OUTCOME_STYLES.get(e.outcome.value, "")
        console.print(f"  rule {e.rule_id}: [{style}]{e.outcome.value}[/{style}] "
                      f"(impact {e.impact.overall:.2f})")


@cli.command()
@click.pass_context
def status(ctx):
    """Show metrics and monitoring status."""
    c = _get_components(ctx)
    engine = c["engine"]

    table = Table(title="Metrics", show_header=True)
    table.add_column("Metric")
    table.add_column("Current", justify="right")
    table.add_column("Previous", justify="right")
    table.add_column("Warning / Critical")
    table.add_column("Trend")

    for m in engine.get_metrics():
        arrow = {"increasing": "↑", "decreasing": "↓"}.get(m.trend.direction.value, "→")
        table.add_row(
            m.name,
            f"{m.current_value:g}",
            f"{m.previous_value:g}",
            f"{m.threshold.direction.value} {m.threshold.warning:g} / {m.threshold.critical:g}",
            f"{arrow} {m.trend.velocity:+.2f}",
        )
    console.print(table)

    st = engine.get_monitoring_status()
    console.print(f"Open alerts: {st['open_alert_count']}  |  "
                  f"Enabled channels: {st['enabled_channel_count']}  |  "
                  f"Last update: {st['last_update'] or 'never'}")


# ──────────────────────────────────────────────────────
# AUTOMATION
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def rules(ctx):
    """List decision rules."""
    c = _get_components(ctx)
    table = Table(title="Decision Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Conditions")
    table.add_column("Actions")
    table.add_column("Approval")
    table.add_column("Enabled")

    for r in sorted(c["engine"].decisions.list_rules(), key=lambda r: r.priority, reverse=True):
        conditions = "\n".join(f"{x.type.value}: {x.field} {x.operator} {x.value}" for x in r.conditions)
        actions = "\n".join(f"{a.type.value} ({a.automation_level.value})" for a in r.actions)
        approval = ", ".join(r.approvers) if r.approval_required else "-"
        table.add_row(r.id, r.name, str(r.priority), conditions, actions, approval,
                      "[green]✓[/green]" if r.enabled else "[red]✗[/red]")
    console.print(table)


@cli.command()
@click.pass_context
def workflows(ctx):
    """List automation workflows and their step graphs."""
    c = _get_components(ctx)
    for w in c["engine"].workflows.list_workflows():
        console.print(f"\n[bold]{w.name}[/bold] [dim]({w.id}, {w.status.value}, trigger: {w.trigger.type.value})[/dim]")
        table = Table(show_header=True)
        table.add_column("Step")
        table.add_column("Type")
        table.add_column("On success")
        table.add_column("On failure")
        for s in w.steps:
            table.add_row(s.id, s.type.value, s.on_success or "[green]complete[/green]",
                          s.on_failure or "[red]abort[/red]")
        console.print(table)


# ──────────────────────────────────────────────────────
# ALERTS
# ──────────────────────────────────────────────────────
@cli.group()
def alerts():
    """Alert records."""
    pass


@alerts.command("history")
@click.option("--limit", default=50, help="Number of records")
@click.pass_context
def alerts_history(ctx, limit):
    """Show past alerts from the audit store."""
    c = _get_components(ctx)
    recent = c["db"].get_recent_alerts(limit=limit)
    if not recent:
        console.print("[dim]No alerts in history[/dim]")
        return
    table = Table(title="Alert History", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Status")
    for a in recent:
        table.add_row(a["created_at"][:16], _severity(a["severity"]), a["type"], a["title"][:60], a["status"])
    console.print(table)


@alerts.command("stats")
@click.option("--days", default=30, help="Days to look back")
@click.pass_context
def alerts_stats(ctx, days):
    """Alert counts by severity."""
    c = _get_components(ctx)
    stats = c["db"].get_alert_stats(days=days)
    if not stats:
        console.print("[dim]No alerts recorded[/dim]")
        return
    for severity in ("emergency", "critical", "warning", "info"):
        if severity in stats:
            console.print(f"  {_severity(severity)}: {stats[severity]}")


# ──────────────────────────────────────────────────────
# WEB
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--port", default=5000, type=int, help="Port to bind to")
@click.option("--host", default="0.0.0.0", type=str, help="Host to bind to")
@click.pass_context
def web(ctx, port, host):
    """Run the monitoring loop and serve the HTTP API."""
    from web.app import create_app

    c = _get_components(ctx)
    engine = c["engine"]
    app = create_app(c["config"], {"monitoring": engine, "db": c["db"]})

    console.print("\n[bold]opswatch -- HTTP API[/bold]\n")
    console.print(f"  Local:    http://localhost:{port}/api/monitoring")
    console.print("\n  Press Ctrl+C to stop.\n")

    engine.start()
    try:
        app.run(host=host, port=port, debug=False)
    finally:
        engine.stop()


if __name__ == "__main__":
    cli(obj={})
