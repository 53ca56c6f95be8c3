"""CLI entrypoint for harmony-codeserver."""

import logging
from pathlib import Path

import rich_click as click

from harmony_codeserver import __version__
from harmony_codeserver.codeserver.controllers import (
    CacheCommand,
    CodeServerCliController,
    DecodeCommand,
    EndpointCommand,
    HostsCommand,
    ServeCommand,
)
from harmony_codeserver.codeserver.errors import CodeServerError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = CodeServerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="harmony-codeserver")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Console log level.",
)
def harmony_codeserver(log_level: str) -> None:
    """Code-generation dispatch coordinator for Harmony tuning sessions."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@harmony_codeserver.command("serve")
@click.argument("codegen_path", type=click.Path(path_type=Path))
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.01),
    default=None,
    help="Seconds between inbox polls. Defaults to HARMONY_CODESERVER_POLL_INTERVAL_SECONDS.",
)
@click.option(
    "--max-steps",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after dispatching this many points.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls.",
)
def serve(
    codegen_path: Path,
    poll_interval: float | None,
    max_steps: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run the coordinator on CODEGEN_PATH, the directory named by the session's SERVER_URL."""

    _run(
        CONTROLLER.serve,
        ServeCommand(
            codegen_path=codegen_path,
            poll_interval_seconds=poll_interval,
            max_steps=max_steps,
            max_idle_polls=max_idle_polls,
        ),
    )


@harmony_codeserver.command("hosts")
@click.argument("spec")
def hosts(spec: str) -> None:
    """Expand a worker host list such as `"alpha 2, beta 1"` into slot names."""

    _run(CONTROLLER.hosts, HostsCommand(spec=spec))


@harmony_codeserver.command("endpoint")
@click.argument("uri")
def endpoint(uri: str) -> None:
    """Parse a `dir://` or `ssh://` endpoint and print its fields."""

    _run(CONTROLLER.endpoint, EndpointCommand(uri=uri))


@harmony_codeserver.command("decode")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def decode(path: Path) -> None:
    """Decode a `candidate.*` or `code_complete.*` message file."""

    _run(CONTROLLER.decode, DecodeCommand(path=path))


@harmony_codeserver.command("cache")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--point",
    default=None,
    help='Comma separated point values to look up, for example `4, 0.5, "unroll"`.',
)
def cache(log_path: Path, point: str | None) -> None:
    """Load a point-logger file into the point cache and optionally look up one point."""

    _run(CONTROLLER.cache, CacheCommand(log_path=log_path, point=point))


def _run(handler, command) -> None:
    try:
        lines = handler(command)
    except (CodeServerError, OSError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    harmony_codeserver()
