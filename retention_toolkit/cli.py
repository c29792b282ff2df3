#!/usr/bin/env python3
"""
Command-line interface for the Retention Toolkit.

Provides configuration inspection, compliance checks, diagnostics and a
long-running deletion worker.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

import click
import yaml  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .compliance import ComplianceGate
from .config import RetentionConfig, get_config
from .encryption import create_key_provider
from .exceptions import RetentionError
from .profiles import PROFILES, get_profile
from .retention import DeletionMethod

console = Console()

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file (JSON or YAML)",
)
profile_option = click.option(
    "--profile",
    type=click.Choice(sorted(PROFILES)),
    help="Start from a built-in profile",
)


def load_config(config_path: Optional[str], profile: Optional[str]) -> RetentionConfig:
    """Resolve configuration from a file, a profile or the environment."""
    if config_path:
        return RetentionConfig.from_file(config_path)
    if profile:
        return get_profile(profile)
    return get_config()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=_LOG_LEVELS.get(level, logging.INFO),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Retention Toolkit - Time-bound retention and secure deletion."""
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Retention Toolkit[/bold blue] v{__version__}\n"
                "[dim]Time-bound retention and secure deletion[/dim]\n\n"
                "Use [bold]retention --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect and validate configuration."""
    pass


@config.command("show")
@config_option
@profile_option
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(config_path: Optional[str], profile: Optional[str], format: str) -> None:
    """Display the effective configuration."""
    try:
        cfg = load_config(config_path, profile)
        config_dict = cfg.to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            console.print(yaml.safe_dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Retention Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            table.add_row("application_name", cfg.application_name)
            table.add_row("node_id", cfg.node_id)
            for section in ("security", "compliance", "deployment", "queue", "audit"):
                table.add_row(f"[bold]{section}[/bold]", "")
                for key, value in _flatten(config_dict[section]).items():
                    if value is None:
                        value = "[dim]Not configured[/dim]"
                    elif isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {key}", str(value))

            console.print(table)

    except RetentionError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


@config.command("validate")
@config_option
@profile_option
def config_validate(config_path: Optional[str], profile: Optional[str]) -> None:
    """Validate configuration against deployment requirements."""
    try:
        cfg = load_config(config_path, profile)
    except RetentionError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        sys.exit(1)

    issues = []
    warnings = []

    try:
        create_key_provider(cfg.security.encryption)
    except RetentionError as e:
        issues.append(str(e))

    if cfg.security.deletion.audit_retention_days < 2555:
        warnings.append("Audit retention is shorter than 7 years")

    strict = {"NIST-800-53", "FedRAMP-High", "DoD-8570"}
    if strict & set(cfg.compliance.frameworks):
        if cfg.security.deletion.overwrite_passes < 3:
            issues.append("Selected frameworks require at least 3 overwrite passes")
        if cfg.compliance.audit_level.value == "basic":
            warnings.append("Selected frameworks expect enhanced or forensic audit")

    if cfg.deployment.storage_provider == "memory":
        warnings.append("In-memory storage does not survive restarts")
    if cfg.queue.provider == "memory":
        warnings.append("In-memory queue loses scheduled deletions on restart")

    if issues:
        console.print("[red]✗ Configuration validation failed:[/red]")
        for issue in issues:
            console.print(f"  [red]• {issue}[/red]")
        sys.exit(1)

    console.print("[green]✓ Configuration is valid[/green]")
    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


@cli.command()
@config_option
@profile_option
def tiers(config_path: Optional[str], profile: Optional[str]) -> None:
    """List configured tiers."""
    try:
        cfg = load_config(config_path, profile)
    except RetentionError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    table = Table(title="User Tiers")
    table.add_column("Tier", style="cyan")
    table.add_column("Retention (h)", justify="right")
    table.add_column("Max size (bytes)", justify="right")
    table.add_column("Overwrite passes", justify="right")
    table.add_column("Features", style="dim")

    for name, tier in cfg.user_tiers.items():
        table.add_row(
            name,
            f"{tier.retention_hours:g}",
            str(tier.max_file_size),
            str(cfg.overwrite_passes_for(name)),
            ", ".join(tier.features) or "-",
        )
    console.print(table)


@cli.command()
def profiles() -> None:
    """List built-in configuration profiles."""
    table = Table(title="Profiles")
    table.add_column("Profile", style="cyan")
    table.add_column("Frameworks", style="green")
    table.add_column("Tiers")
    table.add_column("Description", style="dim")

    for name, builder in sorted(PROFILES.items()):
        data = builder()
        table.add_row(
            name,
            ", ".join(data["compliance"]["frameworks"]),
            ", ".join(data["user_tiers"]),
            (builder.__doc__ or "").strip(),
        )
    console.print(table)


@cli.group()
def compliance() -> None:
    """Compliance gate tools."""
    pass


@compliance.command("check")
@click.argument("tier")
@click.option(
    "--method",
    type=click.Choice([m.value for m in DeletionMethod]),
    default=DeletionMethod.AUTOMATIC.value,
    help="Deletion method to evaluate",
)
@click.option("--object-id", default="compliance-check", help="Object identifier")
@config_option
@profile_option
def compliance_check(
    tier: str,
    method: str,
    object_id: str,
    config_path: Optional[str],
    profile: Optional[str],
) -> None:
    """Evaluate the compliance gate for a deletion without deleting anything."""
    try:
        cfg = load_config(config_path, profile)
        cfg.get_tier(tier)
        decision = asyncio.run(ComplianceGate(cfg).validate_deletion(object_id, tier, method))
    except RetentionError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Compliance check: tier {tier}, method {method}")
    table.add_column("Framework", style="cyan")
    table.add_column("Result")
    table.add_column("Reason", style="dim")
    for result in decision.frameworks:
        status = "[green]approved[/green]" if result.approved else "[red]rejected[/red]"
        table.add_row(result.framework, status, result.reason)
    console.print(table)

    if decision.approved:
        console.print(f"[green]✓ {decision.reason}[/green]")
    else:
        console.print(f"[red]✗ {decision.reason}[/red]")
    console.print(f"[dim]Approval hash: {decision.approval_hash}[/dim]")

    if not decision.approved:
        sys.exit(1)


@cli.command()
@config_option
@profile_option
@click.option(
    "--drain-seconds",
    type=float,
    default=None,
    help="Time to wait for in-flight deletions on shutdown",
)
def worker(
    config_path: Optional[str], profile: Optional[str], drain_seconds: Optional[float]
) -> None:
    """Run the deletion worker until interrupted."""
    from .service import RetentionService

    try:
        cfg = load_config(config_path, profile)
        service = RetentionService(cfg)
    except RetentionError as e:
        console.print(f"[red]Error starting worker: {e}[/red]")
        sys.exit(1)

    setup_logging(cfg.monitoring.log_level)

    async def _run() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass

        await service.start()
        console.print(
            f"[green]✓[/green] Worker running "
            f"(queue: {cfg.queue.provider}, storage: {cfg.deployment.storage_provider})"
        )
        try:
            await stop.wait()
        finally:
            await service.stop(drain_seconds)

    asyncio.run(_run())
    console.print("[green]✓ Worker stopped[/green]")


@cli.command()
@config_option
@profile_option
def doctor(config_path: Optional[str], profile: Optional[str]) -> None:
    """Run diagnostic checks on the retention deployment."""
    console.print("[bold]Running Retention Toolkit diagnostics...[/bold]\n")

    checks_passed = 0
    checks_failed = 0

    try:
        cfg = load_config(config_path, profile)
        console.print("[green]✓[/green] Configuration loaded successfully")
        checks_passed += 1
    except RetentionError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    try:
        provider = create_key_provider(cfg.security.encryption)
        console.print(f"[green]✓[/green] Key provider available ({provider.name})")
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Key provider error: {e}")
        checks_failed += 1

    try:
        from .adapters import create_queue_adapter, create_storage_adapter

        create_storage_adapter(
            cfg.deployment.storage_provider, cfg.deployment.storage_config
        )
        console.print(
            f"[green]✓[/green] Storage adapter available ({cfg.deployment.storage_provider})"
        )
        checks_passed += 1

        async def _queue_length() -> int:
            queue = create_queue_adapter(cfg.queue.provider, cfg.queue.config)
            await queue.initialize()
            try:
                return await queue.get_queue_length()
            finally:
                await queue.stop()

        length = asyncio.run(_queue_length())
        console.print(
            f"[green]✓[/green] Queue reachable ({cfg.queue.provider}, {length} job(s))"
        )
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Adapter error: {e}")
        checks_failed += 1

    try:
        from .audit_trail import get_audit_storage

        asyncio.run(
            get_audit_storage(
                backend=cfg.audit.storage_backend.value,
                connection_string=cfg.audit.connection_string,
                storage_path=cfg.audit.storage_path,
            )
        )
        console.print(
            f"[green]✓[/green] Audit trail storage initialized "
            f"({cfg.audit.storage_backend.value})"
        )
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Audit trail storage error: {e}")
        checks_failed += 1

    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Checks passed: [green]{checks_passed}[/green]")
    console.print(f"  Checks failed: [red]{checks_failed}[/red]")

    if checks_failed == 0:
        console.print("\n[green]✓ All systems operational[/green]")
    else:
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
