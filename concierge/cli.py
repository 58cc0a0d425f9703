"""
Concierge CLI: operator commands.

Usage:
    concierge create-admin <email>                   create an administrator account
    concierge set-tier <business-email> <tier>       change a business tier
    concierge purge-business <business-email>        delete a business and all its data
    concierge enforce-grace                          degrade businesses whose grace period expired
    concierge normalize-tiers                        rewrite invalid stored tiers to starter
    concierge secrets set <tenant> <name> <value>    save a provider credential
    concierge secrets list <tenant>                  list credentials for a tenant
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool):
    """Lani Concierge operator CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@cli.command("create-admin")
@click.argument("email")
@click.option("--name", "-n", default=None, help="Display name")
@click.option("--role", default="admin", show_default=True)
@click.password_option()
def create_admin(email: str, name: str | None, role: str, password: str):
    """Create an administrator account."""
    asyncio.run(_create_admin(email, name, role, password))


async def _create_admin(email: str, name: str | None, role: str, password: str):
    from concierge.core.auth import hash_password
    from concierge.core.crud import create_admin as create_admin_record
    from concierge.core.crud import get_admin_by_email
    from concierge.db import dispose_engine, session_scope

    try:
        async with session_scope() as db:
            if await get_admin_by_email(db, email) is not None:
                click.echo(f"Error: admin {email} already exists", err=True)
                raise SystemExit(1)
            await create_admin_record(db, email=email, password_hash=hash_password(password), name=name, role=role)
    finally:
        await dispose_engine()

    click.echo(f"✓ Created admin: {email.lower()}")


@cli.command("set-tier")
@click.argument("business_email")
@click.argument("tier")
def set_tier(business_email: str, tier: str):
    """Set the tier of a business (starter, professional, premium, enterprise)."""
    from concierge.core.errors import ConciergeError

    try:
        asyncio.run(_set_tier(business_email, tier))
    except ConciergeError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(1)


async def _set_tier(business_email: str, tier: str):
    from concierge.core.crud import get_business_by_email, set_business_tier
    from concierge.core.errors import NotFoundError
    from concierge.core.tiers import Tier
    from concierge.db import dispose_engine, session_scope

    target = Tier.parse(tier)
    try:
        async with session_scope() as db:
            business = await get_business_by_email(db, business_email)
            if business is None:
                raise NotFoundError(f"No business with email {business_email}")
            await set_business_tier(db, business.id, target)
    finally:
        await dispose_engine()

    click.echo(f"✓ {business_email.lower()} is now on the {target.value} tier")


@cli.command("purge-business")
@click.argument("business_email")
@click.confirmation_option(prompt="This permanently deletes the business and all its data. Continue?")
def purge_business(business_email: str):
    """Delete a business with its conversations, messages, knowledge base and guests."""
    asyncio.run(_purge_business(business_email))


async def _purge_business(business_email: str):
    from concierge.core.crud import get_business_by_email
    from concierge.core.crud import purge_business as purge
    from concierge.db import dispose_engine, session_scope

    try:
        async with session_scope() as db:
            business = await get_business_by_email(db, business_email)
            if business is None:
                click.echo(f"Error: no business with email {business_email}", err=True)
                raise SystemExit(1)
            counts = await purge(db, business.id)
    finally:
        await dispose_engine()

    click.echo(f"✓ Purged {business_email.lower()}")
    for table, count in counts.items():
        click.echo(f"  {table:<18} {count}")


@cli.command("enforce-grace")
def enforce_grace():
    """Degrade businesses whose payment grace period has expired."""
    asyncio.run(_enforce_grace())


async def _enforce_grace():
    from concierge.db import dispose_engine, session_scope
    from concierge.workers.billing import enforce_grace_periods

    try:
        async with session_scope() as db:
            degraded = await enforce_grace_periods(db)
    finally:
        await dispose_engine()

    click.echo(f"✓ Degraded {degraded} business(es) to starter")


@cli.command("normalize-tiers")
def normalize_tiers():
    """Rewrite stored tiers outside the enumeration to starter."""
    asyncio.run(_normalize_tiers())


async def _normalize_tiers():
    from concierge.core.crud import normalize_stored_tiers
    from concierge.db import dispose_engine, session_scope

    try:
        async with session_scope() as db:
            fixed = await normalize_stored_tiers(db)
    finally:
        await dispose_engine()

    if not fixed:
        click.echo("All stored tiers are valid.")
        return
    for business_id, old in fixed:
        click.echo(f"  {business_id}  {old!r} -> starter")
    click.echo(f"✓ Normalized {len(fixed)} business(es)")


@cli.group()
def secrets():
    """Manage provider credentials."""


@secrets.command("set")
@click.argument("tenant_slug")
@click.argument("secret_name")
@click.argument("secret_value")
def secrets_set(tenant_slug: str, secret_name: str, secret_value: str):
    """Save a credential for a tenant (e.g. twilio_auth_token)."""
    secrets_dir = Path(f"secrets/{tenant_slug}")
    secrets_dir.mkdir(parents=True, exist_ok=True)

    gitignore = secrets_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text("*\n!.gitignore\n", encoding="utf-8")

    secret_file = secrets_dir / secret_name
    secret_file.write_text(secret_value, encoding="utf-8")

    click.echo(f"✓ Saved secret: secrets/{tenant_slug}/{secret_name}")


@secrets.command("list")
@click.argument("tenant_slug")
def secrets_list(tenant_slug: str):
    """List credential names for a tenant."""
    secrets_dir = Path(f"secrets/{tenant_slug}")
    if not secrets_dir.exists():
        click.echo(f"No secrets directory for {tenant_slug}")
        return

    files = [f.name for f in secrets_dir.iterdir() if f.is_file() and f.name != ".gitignore"]
    if not files:
        click.echo(f"No secrets for {tenant_slug}")
        return

    click.echo(f"Secrets for {tenant_slug}:")
    for name in sorted(files):
        click.echo(f"  • {name}")


if __name__ == "__main__":
    cli()
