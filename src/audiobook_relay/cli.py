"""CLI entry point for the audiobook relay."""

import asyncio
import json
from pathlib import Path

import click
from loguru import logger

from .api.http import build_client
from .config import RelayConfig
from .models import ResolveRequest
from .resolver import AudiobookResolver
from .sanitize import title_from_id

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _public_base(config: RelayConfig) -> str:
    if config.public_base_url:
        return config.public_base_url.rstrip("/")
    host = "127.0.0.1" if config.host in ("0.0.0.0", "::") else config.host
    return f"http://{host}:{config.port}"


@click.group()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool) -> None:
    """Aggregate audiobook metadata and relay audio streams."""
    env_file = Path(config_file) if config_file else _find_config_file()
    config_kwargs: dict[str, object] = {"_env_file": env_file}
    if verbose:
        config_kwargs["log_level"] = "DEBUG"

    config = RelayConfig(**config_kwargs)  # type: ignore[arg-type]
    config.setup_logging()
    log.debug(f"Loaded env from {env_file}" if env_file else "No .env found")
    ctx.obj = config


@main.command()
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", type=int, default=None, help="Bind port (default from config).")
@click.pass_obj
def serve(config: RelayConfig, host: str | None, port: int | None) -> None:
    """Run the add-on HTTP server."""
    import uvicorn

    from .server import create_app

    if host:
        config.host = host
    if port:
        config.port = port

    log.info(f"Listening on http://{config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


async def _resolve(config: RelayConfig, request: ResolveRequest) -> dict:
    async with build_client(config.user_agent) as client:
        resolver = AudiobookResolver.from_config(config, client)
        resolution = await resolver.resolve(request)
    return resolution.model_dump()


@main.command()
@click.argument("item_id")
@click.option("--title", default=None, help="Title hint (default: guessed from the id).")
@click.option("--author", default=None, help="Author hint.")
@click.option("--source-key", default=None, help="LibriVox book id.")
@click.option("--expand/--no-expand", default=True, help="Expand the RSS feed into tracks.")
@click.option("--site", "site_url", default=None, help="AudioAZ page URL to blend in.")
@click.pass_obj
def resolve(
    config: RelayConfig,
    item_id: str,
    title: str | None,
    author: str | None,
    source_key: str | None,
    expand: bool,
    site_url: str | None,
) -> None:
    """Resolve one audiobook id and print the result as JSON."""
    request = ResolveRequest(
        id=item_id,
        title_hint=title or title_from_id(item_id),
        author_hint=author,
        source_key_hint=source_key,
        expand_secondary=expand,
        site_url=site_url,
        relay_base_url=_public_base(config),
    )
    result = asyncio.run(_resolve(config, request))
    click.echo(json.dumps(result, indent=2))


async def _expand(config: RelayConfig, feed_url: str) -> list[dict]:
    async with build_client(config.user_agent) as client:
        resolver = AudiobookResolver.from_config(config, client)
        tracks = await resolver.feeds.expand(feed_url)
    return [t.model_dump() for t in tracks]


@main.command("expand-feed")
@click.argument("feed_url")
@click.pass_obj
def expand_feed(config: RelayConfig, feed_url: str) -> None:
    """Expand an RSS feed into numbered tracks and print them as JSON."""
    click.echo(json.dumps(asyncio.run(_expand(config, feed_url)), indent=2))
