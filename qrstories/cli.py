"""
Command line entry point.

Usage:
    qrstories serve                   - run the API server
    qrstories purge-orphans [--dry-run] - delete blobs no story points at
"""
import asyncio
from datetime import timedelta

import click
import uvicorn

from .config import load_settings
from .core import MongoBackend
from .main import build_service, setup_logging


@click.group()
def cli():
    """QR stories backend"""


@cli.command()
@click.option('--host', default=None, help='Bind address (default: HOST or 0.0.0.0)')
@click.option('--port', default=None, type=int, help='Port (default: PORT or 5000)')
def serve(host, port):
    """Run the API server"""
    settings = load_settings()
    uvicorn.run('qrstories.main:app', host=host or settings.host, port=port or settings.port)


async def _purge(older_than: timedelta, dry_run: bool):
    settings = load_settings()
    setup_logging(settings.log_level)
    backend = await MongoBackend(settings).connect()
    try:
        service = build_service(backend, settings)
        return await service.purge_orphaned_blobs(older_than, dry_run=dry_run)
    finally:
        await backend.close()


@cli.command('purge-orphans')
@click.option('--older-than-minutes', default=60, show_default=True, type=int,
              help='Only touch blobs older than this')
@click.option('--dry-run', is_flag=True, help='List orphaned blobs without deleting them')
def purge_orphans(older_than_minutes, dry_run):
    """Delete stored images that no story references"""
    orphans = asyncio.run(_purge(timedelta(minutes=older_than_minutes), dry_run))
    for info in orphans:
        click.echo(f'{info.handle}\t{info.size}\t{info.created_at.isoformat()}')
    verb = 'Found' if dry_run else 'Deleted'
    click.echo(f'{verb} {len(orphans)} orphaned blob(s)')
