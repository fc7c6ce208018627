#!/usr/bin/env python
"""
Management Script

Database migrations (Flask-Migrate) plus sync operations from the command line.

Usage:
    # Apply migrations
    python manage.py db upgrade

    # Sync a channel right now, in this process
    flask --app manage.py sync-channel UC123 --kind full

    # Queue a sync for the workers
    flask --app manage.py enqueue UC123 --force

    # Drain due jobs once / run the worker pool until interrupted
    flask --app manage.py run-pending
    flask --app manage.py run-workers

    # Recover jobs left running by a crashed process
    flask --app manage.py cleanup-stale

    # Store an upstream bearer token (encrypted)
    flask --app manage.py add-credential default
"""
import json
import os
import sys
import time

# Add the backend directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask.cli import with_appcontext
import click

from tubesync import create_app
from tubesync.services import get_services
from tubesync.services.sync.coordinator import KINDS
from tubesync.services.sync.errors import SyncError

app = create_app()


@app.cli.command('sync-channel')
@click.argument('channel_id')
@click.option('--kind', type=click.Choice(KINDS), default='full', show_default=True)
@click.option('--force', is_flag=True, help='Bypass the response cache')
@click.option('--join', is_flag=True, help='Wait for a sync already in flight')
@with_appcontext
def sync_channel(channel_id, kind, force, join):
    """Run one channel sync inline and print its result."""
    services = get_services()
    try:
        result = services.coordinator.sync_channel(
            channel_id,
            kind=kind,
            force_refresh=force,
            mode='join' if join else 'enqueue',
            deadline=app.config.get('SYNC_DEADLINE_SECONDS') or None,
        )
    except SyncError as e:
        click.echo(click.style(f'✗ {e.kind}: {e.message}', fg='red'))
        sys.exit(1)

    color = 'green' if result.outcome == 'succeeded' else 'yellow'
    click.echo(click.style(f'Outcome: {result.outcome}', fg=color))
    click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


@app.cli.command('enqueue')
@click.argument('channel_id')
@click.option('--kind', type=click.Choice(KINDS), default='full', show_default=True)
@click.option('--force', is_flag=True, help='Bypass the response cache')
@with_appcontext
def enqueue(channel_id, kind, force):
    """Queue a sync job."""
    job, created = get_services().queue.enqueue(channel_id, kind, force_refresh=force)
    if created:
        click.echo(click.style(f'✓ Queued job {job.id}', fg='green'))
    else:
        click.echo(f'Job {job.id} already {job.state} for {channel_id}/{kind}')


@app.cli.command('run-pending')
@click.option('--limit', type=int, default=None, help='Stop after this many jobs')
@with_appcontext
def run_pending(limit):
    """Run every due job once, in this process."""
    processed = get_services().queue.run_pending(limit)
    click.echo(f'Processed {processed} jobs')


@app.cli.command('run-workers')
@click.option('--no-scheduler', is_flag=True, help='Only run queued jobs')
@with_appcontext
def run_workers(no_scheduler):
    """Run the worker pool (and scheduler) until interrupted."""
    services = get_services()
    services.queue.start()
    if not no_scheduler:
        services.scheduler.start()
    click.echo(click.style(f'✓ {services.queue.pool_size} workers running, Ctrl+C to stop', fg='green'))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo('Stopping...')
    finally:
        services.stop(timeout=30)


@app.cli.command('cleanup-stale')
@click.option('--timeout', type=int, default=None, help='Heartbeat timeout in seconds')
@with_appcontext
def cleanup_stale(timeout):
    """Recover stale running jobs."""
    timeout = timeout or app.config.get('JOB_HEARTBEAT_TIMEOUT', 300)
    cleaned = get_services().queue.cleanup_stale_jobs(timeout)
    if cleaned > 0:
        click.echo(click.style(f'✓ Recovered {cleaned} stale jobs', fg='green'))
    else:
        click.echo('No stale jobs found')


@app.cli.command('add-credential')
@click.argument('name')
@click.option('--token', prompt=True, hide_input=True, help='Upstream bearer token')
@with_appcontext
def add_credential(name, token):
    """Store (or replace) an encrypted upstream credential."""
    from tubesync.utils.crypto import CredentialCryptoError

    try:
        get_services().credentials.save(name, token)
    except CredentialCryptoError as e:
        click.echo(click.style(f'✗ {e}', fg='red'))
        sys.exit(1)
    click.echo(click.style(f"✓ Credential '{name}' saved", fg='green'))


if __name__ == '__main__':
    import subprocess

    if len(sys.argv) > 1 and sys.argv[1] == 'db':
        # Use flask db commands
        os.environ['FLASK_APP'] = 'manage.py'
        subprocess.run(['flask'] + sys.argv[1:])
    else:
        app.cli()
