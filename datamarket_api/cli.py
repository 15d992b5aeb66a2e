"""CLI commands for the Data Market API."""

import sys

import click

from datamarket_api.db.base import Base
from datamarket_api.db.session import SessionLocal, engine
from datamarket_api.errors import MarketError
from datamarket_api.ledger.projection import MarketProjection
from datamarket_api.ledger.source import get_event_source


@click.group()
def cli():
    """Data Market API CLI."""
    pass


@cli.command("init-db")
def init_db():
    """Create projection tables."""
    Base.metadata.create_all(bind=engine)
    click.echo("✓ Projection tables created.")


@cli.command()
def sync():
    """Fold new ledger events into the local projection."""
    db = SessionLocal()
    try:
        added = MarketProjection(db, get_event_source()).sync()
    except MarketError as e:
        click.echo(f"✗ Ledger sync failed: {e.error_code}: {e.detail}", err=True)
        sys.exit(1)
    finally:
        db.close()
    for stream, count in added.items():
        click.echo(f"✓ {stream}: {count} new")


if __name__ == "__main__":
    cli()
