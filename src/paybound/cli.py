"""
Paybound CLI — policy gateway for agent x402 payments.

Commands:
    paybound serve         Run the gateway HTTP service
    paybound policies      Validate and list a policy file
    paybound check         Dry-run a payment against policies and the ledger
    paybound transactions  Show recorded decisions
    paybound stats         Ledger totals
"""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import GatewayConfig
from .errors import ConfigError, LedgerError, PolicyLoadError
from .evaluator import PolicyEvaluator
from .gateway import UNKNOWN_AGENT, PaymentGateway
from .ledger import Ledger
from .loader import load_policies
from .policy import PolicyTable, Transaction, freeze_policies


def _load_config(**overrides) -> GatewayConfig:
    try:
        return GatewayConfig.from_env(**overrides)
    except ConfigError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


def _open_ledger(db: Optional[str]) -> Ledger:
    path = db or _load_config().ledger_path
    try:
        return Ledger(path)
    except LedgerError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


def _format_ts(ts_ms: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts_ms / 1000))


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity")
def main(log_level: str):
    """Paybound — budget policy gateway for AI agent payments."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@main.command()
@click.option("--host", default=None, help="Bind address (env PAYBOUND_HOST)")
@click.option("--port", type=int, default=None, help="Listen port (env PAYBOUND_PORT)")
@click.option("--policy-file", type=click.Path(path_type=Path), default=None,
              help="YAML policy file (env PAYBOUND_POLICY_FILE)")
@click.option("--upstream", default=None,
              help="Upstream facilitator base URL (env PAYBOUND_UPSTREAM)")
@click.option("--db", default=None, help="Ledger SQLite path (env PAYBOUND_DB)")
@click.option("--upstream-timeout", type=float, default=None,
              help="Upstream timeout in seconds (env PAYBOUND_UPSTREAM_TIMEOUT)")
def serve(
    host: Optional[str],
    port: Optional[int],
    policy_file: Optional[Path],
    upstream: Optional[str],
    db: Optional[str],
    upstream_timeout: Optional[float],
):
    """Run the gateway HTTP service."""
    import uvicorn

    from .app import create_app

    config = _load_config(
        host=host,
        port=port,
        policy_file=policy_file,
        upstream_url=upstream,
        ledger_path=db,
        upstream_timeout_seconds=upstream_timeout,
    )
    try:
        gateway = PaymentGateway.from_config(config)
    except (ConfigError, LedgerError) as e:
        click.echo(f"❌ Failed to start gateway: {e}", err=True)
        sys.exit(1)

    if gateway.policy_load_error:
        click.echo(f"❌ Policy file not loaded: {gateway.policy_load_error}", err=True)
        click.echo("   Enforcing the default policy for all agents.", err=True)

    click.echo(f"✅ Paybound {__version__} on http://{config.host}:{config.port}")
    click.echo(f"   Policies:  {len(gateway.policies)}")
    click.echo(f"   Upstream:  {config.upstream_url}")
    click.echo(f"   Ledger:    {config.ledger_path}")
    try:
        uvicorn.run(create_app(gateway), host=config.host, port=config.port)
    finally:
        gateway.close()


@main.command()
@click.argument("policy_file", type=click.Path(path_type=Path))
def policies(policy_file: Path):
    """Validate a policy file and list its policies."""
    try:
        table = load_policies(policy_file)
    except PolicyLoadError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ {len(table)} policies in {policy_file}")
    for agent_id, policy in table.items():
        b = policy.budget
        click.echo(f"   {agent_id} → {policy.name}")
        click.echo(
            f"      ${b.max_per_transaction:g}/tx, ${b.max_per_hour:g}/hr, "
            f"${b.max_per_day:g}/day, on violation: {policy.on_violation.value}"
        )
        click.echo(f"      resources: {', '.join(policy.allowed_resources) or '(none)'}")


@main.command()
@click.option("--agent", default=UNKNOWN_AGENT, show_default=True, help="Agent id")
@click.option("--resource", required=True, help="Resource URL being paid for")
@click.option("--amount", type=float, required=True, help="Payment amount")
@click.option("--policy-file", type=click.Path(path_type=Path), default=None,
              help="YAML policy file (env PAYBOUND_POLICY_FILE)")
@click.option("--db", default=None, help="Ledger SQLite path (env PAYBOUND_DB)")
def check(agent: str, resource: str, amount: float, policy_file: Optional[Path], db: Optional[str]):
    """Evaluate a payment without recording or forwarding it."""
    config = _load_config(policy_file=policy_file, ledger_path=db)
    table: PolicyTable = freeze_policies({})
    if config.policy_file is not None:
        try:
            table = load_policies(config.policy_file)
        except PolicyLoadError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)

    with _open_ledger(config.ledger_path) as ledger:
        tx = Transaction(agent_id=agent, resource_url=resource, amount=amount)
        evaluation = PolicyEvaluator().evaluate(tx, table, ledger.spend_in_window)

    mark = "✅" if evaluation.allowed else "❌"
    click.echo(f"{mark} {evaluation.result.value}: {evaluation.reason}")
    click.echo(f"   Policy: {evaluation.matched_policy}")
    if not evaluation.allowed:
        sys.exit(2)


@main.command()
@click.option("--db", default=None, help="Ledger SQLite path (env PAYBOUND_DB)")
@click.option("--agent", default=None, help="Only this agent")
@click.option("--since", type=int, default=None, help="Epoch ms lower bound (inclusive)")
@click.option("--limit", type=int, default=20, show_default=True, help="Max records")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output JSON")
def transactions(db: Optional[str], agent: Optional[str], since: Optional[int], limit: int, as_json: bool):
    """Show recorded decisions, newest first."""
    with _open_ledger(db) as ledger:
        records = ledger.query_transactions(agent_id=agent, since=since, limit=limit)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return
    if not records:
        click.echo("No transactions recorded.")
        return
    for r in records:
        mark = "✅" if r.allowed else "❌"
        click.echo(
            f"{mark} #{r.id} {_format_ts(r.timestamp)} {r.agent_id} "
            f"{r.amount:g} {r.currency} {r.resource_url}"
        )
        click.echo(f"   [{r.matched_policy}] {r.reason}")


@main.command()
@click.option("--db", default=None, help="Ledger SQLite path (env PAYBOUND_DB)")
def stats(db: Optional[str]):
    """Ledger totals across all agents."""
    with _open_ledger(db) as ledger:
        s = ledger.stats()
    click.echo(f"Transactions: {s.count}")
    click.echo(f"Volume:       {s.total_volume:g}")
    click.echo(f"Agents:       {s.agents}")


if __name__ == "__main__":
    main()
