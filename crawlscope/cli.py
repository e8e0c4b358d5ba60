import json
from datetime import date

import click
from flask import current_app
from flask.cli import with_appcontext

from crawlscope.exceptions import ConfigurationError
from crawlscope.extensions import db
from crawlscope.services.ingestion import factory
from crawlscope.services.ingestion.log_source import FileLogSource
from crawlscope.services.ingestion.reclassify import reclassify_events
from crawlscope.services.ingestion.store import EventStore
from crawlscope.services.traffic.enrichment import classify_request
from crawlscope.utils.network_origin import parse_asn_overrides


def _parse_day(ctx, param, value):
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter('expected YYYY-MM-DD') from None


def _parse_headers(values):
    headers = {}
    for raw in values:
        name, sep, value = raw.partition(':')
        if not sep or not name.strip():
            raise click.BadParameter(f'expected "Name: value", got {raw!r}', param_hint='--header')
        headers.setdefault(name.strip(), []).append(value.strip())
    return headers


@click.command('ingest-logs')
@click.option('--log-file', type=click.Path(dir_okay=False), default=None,
              help='Read a JSON-lines access log instead of the configured source.')
@with_appcontext
def ingest_logs_command(log_file):
    """Run one incremental ingestion pass."""
    try:
        coordinator = factory.build_coordinator(log_source=FileLogSource(log_file) if log_file else None)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))

    report = coordinator.run()
    click.echo(json.dumps(report.as_dict(), indent=2, sort_keys=True))
    if not report.succeeded:
        raise click.ClickException(f'ingestion failed during {report.failed_in.value}: {report.error}')


@click.command('backfill-logs')
@click.argument('start', callback=_parse_day)
@click.argument('end', callback=_parse_day)
@click.option('--site', 'sites', multiple=True, help='Only keep these sites (defaults to BACKFILL_INCLUDED_SITES).')
@click.option('--log-file', type=click.Path(dir_okay=False), default=None)
@with_appcontext
def backfill_logs_command(start, end, sites, log_file):
    """Load historical logs for START..END (inclusive, UTC days)."""
    if end < start:
        raise click.BadParameter('END is before START')
    try:
        backfill = factory.build_backfill(
            log_source=FileLogSource(log_file) if log_file else None,
            included_sites=list(sites) if sites else None,
        )
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))

    report = backfill.run(start, end)
    for day in report.days:
        if day.skipped:
            click.echo(f'{day.day}: skipped ({day.existing} existing events)')
        else:
            click.echo(
                f'{day.day}: extracted={day.extracted} filtered={day.filtered} '
                f'malformed={day.malformed} stored={day.persisted}'
            )
    click.echo(f'Stored {report.persisted} events, skipped {report.skipped_days} days.')


@click.command('reclassify-events')
@click.option('--batch-size', default=1000, show_default=True, type=click.IntRange(min=1))
@with_appcontext
def reclassify_events_command(batch_size):
    """Re-run the classifier over every stored event."""
    report = reclassify_events(
        EventStore(db),
        factory.build_classifier(),
        batch_size=batch_size,
        session_window_seconds=current_app.config.get('INGEST_SESSION_WINDOW_SECONDS', 0),
        log=current_app.logger,
    )
    click.echo(f'Processed {report.processed} events, updated {report.updated}.')
    total = sum(report.distribution.values()) or 1
    for category, count in report.distribution.items():
        click.echo(f'  {category:<28} {count:>8} ({count * 100.0 / total:.1f}%)')


@click.command('classify-request')
@click.option('--user-agent', '-u', default=None)
@click.option('--path', '-p', default='/', show_default=True)
@click.option('--header', '-H', 'headers', multiple=True, help='"Name: value", repeatable.')
@click.option('--address', '-a', default='198.51.100.1', show_default=True)
@with_appcontext
def classify_request_command(user_agent, path, headers, address):
    """Classify an ad-hoc request and print the verdict."""
    event = classify_request(
        factory.build_enricher(),
        user_agent=user_agent,
        path=path,
        headers=_parse_headers(headers),
        address=address,
    )
    click.echo(json.dumps({
        'category': event.category.value,
        'identity': event.identity_name,
        'tier': event.detection_tier,
        'reason': event.reason,
        'is_bot': event.is_bot,
        'asn': event.asn,
        'asn_org': event.asn_org,
        'datacenter_provider': event.datacenter_provider,
        'country': event.country,
    }, indent=2))


@click.command('datacenter-lookup')
@click.argument('address')
@click.option('--add-asn', 'additions', multiple=True, metavar='ASN:LABEL',
              help='Preview the result with extra provider mappings.')
@with_appcontext
def datacenter_lookup_command(address, additions):
    """Show the network origin resolved for ADDRESS."""
    resolver = current_app.extensions['crawlscope']['origin']
    if not resolver.enabled:
        click.echo('warning: ASN database not loaded; all lookups are empty', err=True)
    try:
        mappings = parse_asn_overrides(additions)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint='--add-asn')
    for asn, label in mappings.items():
        resolver = resolver.with_mapping(asn, label)

    origin = resolver.resolve(address)
    click.echo(f'address:  {address}')
    click.echo(f'asn:      {origin.asn}')
    click.echo(f'asn_org:  {origin.asn_org}')
    click.echo(f'provider: {origin.datacenter_provider or "-"}')


def register_cli_commands(app):
    """Register custom Flask CLI commands."""
    app.cli.add_command(ingest_logs_command)
    app.cli.add_command(backfill_logs_command)
    app.cli.add_command(reclassify_events_command)
    app.cli.add_command(classify_request_command)
    app.cli.add_command(datacenter_lookup_command)
