#!/usr/bin/env python3
"""Maintenance commands.

Usage:
    flask --app app collectives tier-stats 3
    python cli.py subscribers scouts --channel backers
"""

from __future__ import annotations

import sys
from typing import Optional

import click
from flask.cli import ScriptInfo, with_appcontext

from errors import PipelineError
from extensions import db
from models import Tier


@click.group("collectives")
def collectives_cli():
    """Order pipeline maintenance tools."""
    pass


@collectives_cli.command("init-db")
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("Database initialised.")


@collectives_cli.command("tier-stats")
@click.argument("tier_id", type=int)
@with_appcontext
def tier_stats_command(tier_id: int):
    """Show orders and remaining capacity of a tier."""
    from services.capacity import tier_stats

    tier = db.session.get(Tier, tier_id)
    if tier is None:
        click.echo(f"Error: no tier with id {tier_id}", err=True)
        sys.exit(1)
    stats = tier_stats(tier)
    available = stats["availableQuantity"]
    click.echo(f"{tier.name} ({tier.kind})")
    click.echo(f"  orders:    {stats['totalOrders']}")
    click.echo(f"  quantity:  {stats['totalQuantity']}")
    click.echo(f"  available: {'unlimited' if available is None else available}")


@collectives_cli.command("subscribers")
@click.argument("slug")
@click.option("--channel", "-c", default=None, help="Mailing list, e.g. backers")
@click.option("--activity", "-a", default=None, help="Also honour opt-outs of this activity")
@with_appcontext
def subscribers_command(slug: str, channel: Optional[str], activity: Optional[str]):
    """List the users a collective's mailing list reaches."""
    from services.notifications import get_subscribers

    try:
        users = get_subscribers(slug, channel, activity)
    except PipelineError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    for user in users:
        click.echo(f"{user.id}\t{user.email}\t{user.name or ''}")
    click.echo(f"{len(users)} subscriber(s)")


if __name__ == "__main__":
    from app import create_app

    collectives_cli(obj=ScriptInfo(create_app=create_app))
