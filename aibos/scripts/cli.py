"""Operational CLI commands (``flask fx refresh``, ``flask periods generate``...)."""

from __future__ import annotations

import click

from aibos.core.utils.errors import DomainError


@click.group("fx")
def fx_group():
    """Exchange-rate maintenance."""


@fx_group.command("refresh")
@click.option("--base", "-b", default=None, help="Base currency (defaults to DEFAULT_BASE_CURRENCY)")
@click.option("--targets", "-t", required=True, help="Comma separated target currencies, e.g. EUR,GBP")
def fx_refresh_command(base: str | None, targets: str):
    from flask import current_app

    from aibos.domains.fx.services.rate_service import ingest_rates

    base = (base or current_app.config.get("DEFAULT_BASE_CURRENCY", "USD")).upper()
    wanted = [code.strip().upper() for code in targets.split(",") if code.strip()]
    try:
        result = ingest_rates(base, wanted)
    except DomainError as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}")
    click.echo(f"Stored {len(result.rates)} {result.base} rates from {result.provider} ({result.source})")
    for code, rate in sorted(result.rates.items()):
        click.echo(f"  {result.base}/{code} = {rate}")


@click.group("periods")
def periods_group():
    """Fiscal period maintenance."""


@periods_group.command("generate")
@click.option("--company-id", "-c", type=int, required=True, help="Company to generate periods for")
@click.option("--year", "-y", type=int, required=True, help="Fiscal year (the calendar year it ends in)")
def periods_generate_command(company_id: int, year: int):
    from aibos.core.tenancy.models import Company
    from aibos.domains.periods.services.period_service import generate_periods_for_company
    from aibos.extensions import db

    company = db.session.get(Company, company_id)
    if company is None:
        raise click.ClickException(f"Company {company_id} not found")
    try:
        periods = generate_periods_for_company(company, year)
    except DomainError as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}")
    click.echo(f"Generated {len(periods)} periods for {company.code} FY{year}")


@click.group("idempotency")
def idempotency_group():
    """Idempotency key housekeeping."""


@idempotency_group.command("purge")
def idempotency_purge_command():
    from aibos.platform.idempotency.services import purge_expired

    click.echo(f"Purged {purge_expired()} expired idempotency keys")


@click.group("outbox")
def outbox_group():
    """Transactional outbox worker."""


@outbox_group.command("dispatch")
@click.option("--loop", is_flag=True, help="Keep polling instead of draining one batch")
def outbox_dispatch_command(loop: bool):
    from aibos.platform.worker.dispatcher import dispatch_once, run_dispatcher

    if loop:
        run_dispatcher()
        return
    click.echo(f"Dispatched {dispatch_once()} outbox messages")


@click.command("seed-currencies")
def seed_currencies_command():
    from aibos.domains.fx.services.currency_service import seed_currencies

    click.echo(f"Created {seed_currencies()} currencies")


def register_commands(app):
    """Register CLI commands with the app."""
    app.cli.add_command(fx_group)
    app.cli.add_command(periods_group)
    app.cli.add_command(idempotency_group)
    app.cli.add_command(outbox_group)
    app.cli.add_command(seed_currencies_command)
