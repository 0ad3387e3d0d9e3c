"""
Command-line interface for the latency benchmark.
"""

import asyncio
from typing import Optional

import click
from rich.console import Console
from tqdm import tqdm

from latbench.bench import run_benchmark
from latbench.config import load_settings
from latbench.errors import BenchError
from latbench.log import setup_logging
from latbench.report import render_header, render_json, render_report


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="latbench")
@click.option(
    "--server", "-s",
    help="The AMQP server. Defaults to local (127.0.0.1) but will fall back to --fallback-server."
)
@click.option(
    "--num-responders", "-w",
    type=click.IntRange(min=1),
    help="Number of service responders per replica group."
)
@click.option(
    "--num-replicas", "-r",
    type=click.IntRange(min=1),
    help="Number of replicated responses (replica groups racing each request)."
)
@click.option(
    "--num-requests", "-n",
    type=click.IntRange(min=1),
    help="Number of service requests."
)
@click.option(
    "--fallback-server",
    help="Server tried once when the primary is unreachable."
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds to wait for a reply before the run fails."
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (logs go to stderr)."
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file.")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON instead of a chart.")
def main(
    server: Optional[str],
    num_responders: Optional[int],
    num_replicas: Optional[int],
    num_requests: Optional[int],
    fallback_server: Optional[str],
    timeout: Optional[float],
    log_level: Optional[str],
    log_file: Optional[str],
    as_json: bool,
):
    """Measure request/reply latency against racing replica groups of simulated responders."""
    try:
        settings = load_settings(
            server_url=server,
            fallback_url=fallback_server,
            num_responders=num_responders,
            num_replicas=num_replicas,
            num_requests=num_requests,
            request_timeout_s=timeout,
            log_level=log_level.upper() if log_level else None,
        )
    except BenchError as exc:
        raise click.ClickException(str(exc))
    setup_logging(settings.log_level, log_file=log_file)

    console = Console()
    progress: Optional[tqdm] = None

    def on_start(rtt: float) -> None:
        nonlocal progress
        if not as_json:
            render_header(console, rtt, settings)
        progress = tqdm(
            total=settings.num_requests,
            desc=f"Sending {settings.num_requests} requests",
            leave=False,
            disable=as_json,
        )

    def on_progress(done: int) -> None:
        if progress is not None:
            progress.update(1)

    if not as_json:
        console.print(f"Attempting to connect to [{settings.server_url}]", markup=False)
    try:
        report = asyncio.run(run_benchmark(settings, on_start=on_start, on_progress=on_progress))
    except BenchError as exc:
        raise click.ClickException(str(exc))
    finally:
        if progress is not None:
            progress.close()

    if as_json:
        click.echo(render_json(report))
    else:
        render_report(console, report)


if __name__ == "__main__":
    main()
