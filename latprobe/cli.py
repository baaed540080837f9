"""CLI entry point for latprobe."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from datetime import datetime, timezone

import click

from latprobe import __version__
from latprobe.config import DEFAULT_TIMEOUT
from latprobe.models import LatencyReport, ProbeConfig


@click.command()
@click.argument("url")
@click.option("-t", "--timeout", default=DEFAULT_TIMEOUT, type=float, help="Probe timeout in seconds", show_default=True)
@click.option("--dns-server", default=None, help="Resolve via this DNS server (e.g., 8.8.8.8)")
@click.option("-4", "--ipv4-only", is_flag=True, help="Force IPv4")
@click.option("-6", "--ipv6-only", is_flag=True, help="Force IPv6")
@click.option("--http2/--no-http2", default=False, help="Offer HTTP/2 via ALPN", show_default=True)
@click.option("-k", "--insecure", is_flag=True, help="Skip TLS certificate verification")
@click.option("-L", "--follow-redirects", is_flag=True, help="Follow redirects")
@click.option("--table", is_flag=True, help="Show a colored table instead of the plain block")
@click.option("--json", "json_output", is_flag=True, help="Output JSON to stdout")
@click.option("--csv", "csv_output", is_flag=True, help="Output CSV to stdout")
@click.option("-o", "--output", default=None, help="Write results to file")
@click.option("-v", "--verbose", is_flag=True, help="Log connection events")
@click.version_option(version=__version__)
def main(
    url: str,
    timeout: float,
    dns_server: str | None,
    ipv4_only: bool,
    ipv6_only: bool,
    http2: bool,
    insecure: bool,
    follow_redirects: bool,
    table: bool,
    json_output: bool,
    csv_output: bool,
    output: str | None,
    verbose: bool,
) -> None:
    """latprobe: HTTP(S) request latency breakdown.

    Fetches URL once with caching disabled and reports DNS lookup, TCP
    connect, TLS handshake, time to first byte, total time and download
    speed.
    """
    _configure_logging(verbose)

    if ipv4_only and ipv6_only:
        raise click.UsageError("--ipv4-only and --ipv6-only are mutually exclusive")
    if timeout <= 0:
        raise click.BadParameter("must be positive", param_hint="--timeout")

    # The probe connects directly; proxy settings are not applied.
    if not json_output and not csv_output:
        for var in ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy"):
            if os.environ.get(var):
                from latprobe.display import render_warning
                render_warning(f"Proxy detected ({var}={os.environ[var]}); ignored, probing directly")
                break

    config = ProbeConfig(
        timeout=timeout,
        dns_server=dns_server,
        ipv4_only=ipv4_only,
        ipv6_only=ipv6_only,
        http2=http2,
        verify=not insecure,
        follow_redirects=follow_redirects,
    )

    from latprobe.errors import ProbeError
    from latprobe.formatter import format_error

    try:
        report = asyncio.run(_run(url, config))
    except KeyboardInterrupt:
        click.echo("Interrupted.", err=True)
        sys.exit(130)
    except ProbeError as exc:
        click.echo(format_error(exc), err=True)
        sys.exit(1)

    _handle_output(report, table, json_output, csv_output, output)


async def _run(url: str, config: ProbeConfig) -> LatencyReport:
    """Run a single probe with a throwaway client."""
    from latprobe.engine import probe

    return await probe(url, config=config)


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    from rich.logging import RichHandler

    from latprobe.display import err_console

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    # Keep the output to latprobe's own events.
    for name in ("httpcore", "httpx", "hpack", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _handle_output(
    report: LatencyReport,
    table: bool,
    json_output: bool,
    csv_output: bool,
    output_file: str | None,
) -> None:
    """Handle output rendering and export."""
    from latprobe.export import export_csv, export_json, write_to_file
    from latprobe.formatter import format_report

    timestamp = datetime.now(timezone.utc).isoformat()

    if json_output or csv_output:
        content = export_json(report, timestamp) if json_output else export_csv(report, timestamp)
        if output_file:
            write_to_file(content, output_file)
            click.echo(f"Results written to {output_file}", err=True)
        else:
            click.echo(content)
        return

    if table:
        from latprobe.display import render_report
        render_report(report)
    else:
        click.echo(format_report(report))

    # Also write to file if -o specified (plain mode writes JSON)
    if output_file:
        write_to_file(export_json(report, timestamp), output_file)
        click.echo(f"Results written to {output_file}", err=True)


if __name__ == "__main__":
    main()
