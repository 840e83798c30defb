from concurrent.futures import ThreadPoolExecutor
import json
import threading
from typing import List, Optional, Sequence, Tuple

import click

from crib_hunter.algorithm.differential import DifferentialKeystreamAnalyzer
from crib_hunter.catalog.ciphers import build_cipher_constructions
from crib_hunter.catalog.key_derivation import build_key_derivations
from crib_hunter.config import SearchConfig
from crib_hunter.errors import SampleLoadError
from crib_hunter.log_setup import configure_logging
from crib_hunter.models.results import SearchOutcome
from crib_hunter.models.sample import Sample
from crib_hunter.progress import SearchSnapshot, SingleSlotQueue
from crib_hunter.solver import solve
from crib_hunter.ui import ui_loop
from crib_hunter.utils import fetch_samples, load_sample_file

LOG_LEVELS = ["debug", "info", "warning", "error"]


@click.group()
@click.option("--log-level", "-l", type=click.Choice(LOG_LEVELS), default="warning", help="structlog level (stderr)")
@click.option("--log-json", is_flag=True, help="Emit log lines as JSON")
def cli(log_level: str, log_json: bool):
    configure_logging(log_level, log_json)


def sample_options(fn):
    for option in reversed([
        click.option("--samples-path", "-s", type=click.Path(exists=True, dir_okay=False), help="JSON sample file"),
        click.option("--samples-url", "-u", help="HTTP endpoint returning the same JSON document"),
        click.option("--field", "-F", "fields", multiple=True, help="Context field name (repeatable, overrides the file)"),
    ]):
        fn = option(fn)
    return fn


def config_options(fn):
    for option in reversed([
        click.option("--workers", "-w", type=click.IntRange(min=0), default=0, help="Worker threads (0: auto)"),
        click.option("--max-combinations", type=click.IntRange(min=1), default=5_000_000),
        click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds"),
        click.option("--max-iv-offsets", type=click.IntRange(min=1), default=256),
        click.option("--max-period", type=click.IntRange(min=1), default=64),
    ]):
        fn = option(fn)
    return fn


def read_samples(samples_path: Optional[str], samples_url: Optional[str],
                 fields: Sequence[str]) -> Tuple[List[Sample], List[str]]:
    if bool(samples_path) == bool(samples_url):
        raise click.UsageError("Give exactly one of --samples-path or --samples-url")
    try:
        if samples_path:
            samples, declared = load_sample_file(samples_path)
        else:
            samples, declared = fetch_samples(samples_url)
    except SampleLoadError as e:
        raise click.ClickException(str(e))
    if not samples:
        raise click.ClickException("No usable samples")
    return samples, list(fields) or declared


def build_config(workers: int, max_combinations: int, timeout: Optional[float],
                 max_iv_offsets: int, max_period: int) -> SearchConfig:
    return SearchConfig(
        workers=workers,
        max_combinations=max_combinations,
        timeout=timeout,
        max_iv_offsets=max_iv_offsets,
        max_period=max_period,
    )


def solver(samples: List[Sample], fields: List[str], config: SearchConfig, progress: bool) -> SearchOutcome:
    """Run the solver on a worker thread, optionally with the live progress table.

    Ctrl-C cancels the search; what was tried so far ends as Unresolved("cancelled").
    """
    cancel_event = threading.Event()
    state_queue: Optional[SingleSlotQueue[SearchSnapshot]] = SingleSlotQueue() if progress else None
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(solve, samples, fields, config, state_queue, cancel_event=cancel_event)

        try:
            if state_queue is not None:
                ui_loop(state_queue)
            return future.result()
        except KeyboardInterrupt:
            cancel_event.set()
            if state_queue is not None:
                state_queue.close()

        return future.result()


def echo_result(result) -> None:
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command()
@sample_options
@config_options
@click.option("--progress/--no-progress", default=False, help="Show the live progress table")
def search(samples_path, samples_url, fields, workers, max_combinations, timeout,
           max_iv_offsets, max_period, progress: bool):
    """Search for the transform that maps every ciphertext to its plaintext."""
    samples, names = read_samples(samples_path, samples_url, fields)
    config = build_config(workers, max_combinations, timeout, max_iv_offsets, max_period)
    echo_result(solver(samples, names, config, progress))


@cli.command()
@sample_options
@click.option("--max-period", type=click.IntRange(min=1), default=64)
def diff(samples_path, samples_url, fields, max_period: int):
    """Recover keystream bytes from same-key samples without searching."""
    samples, names = read_samples(samples_path, samples_url, fields)
    analyzer = DifferentialKeystreamAnalyzer(names, SearchConfig(max_period=max_period))
    echo_result(analyzer.analyze(samples))


@cli.command()
@click.option("--field", "-F", "fields", multiple=True, help="Context field name (repeatable)")
def catalog(fields):
    """List key derivations and cipher constructions."""
    click.echo("# key derivations")
    for kd in build_key_derivations(fields):
        length = "any" if kd.output_length is None else kd.output_length
        click.echo(f"{kd.name}\t{length}")

    click.echo("# cipher constructions")
    for spec in build_cipher_constructions():
        if spec.keyless:
            keys = "-"
        elif spec.key_lengths is None:
            keys = "any"
        else:
            keys = f"{min(spec.key_lengths)}..{max(spec.key_lengths)}" if len(spec.key_lengths) > 3 \
                else ",".join(str(n) for n in sorted(spec.key_lengths))
        click.echo(f"{spec.name}\t{spec.family}\tkey={keys}\tiv={spec.iv_length}\ttag={spec.tag_length}")


if __name__ == "__main__":
    cli()
