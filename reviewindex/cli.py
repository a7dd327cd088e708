"""Command-line interface for reviewindex.

This module defines the CLI commands using the Click framework.

Commands:
- serve: Run the site over HTTP.
- render: Render one review or comparison page to stdout or a file.
- new: Create a new markdown draft interactively.
- cache-clear: Empty the SQLite page cache.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import questionary

from . import __version__
from .config import ConfigError, directories, load_config
from .frontmatter import compose_document
from .logs import configure_logging
from .utils import slugify


def _load(ctx: click.Context) -> dict[str, Any]:
    """Load configuration once per invocation."""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(Path.cwd())
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from None
        config = ctx.obj["config"]
        configure_logging(config["log_level"], config["log_format"])
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__, prog_name="reviewindex")
def cli():
    """ReviewIndex review and comparison site."""


@cli.command()
@click.option("--host", required=False, help="Interface to bind (overrides reviewindex.yaml)")
@click.option("--port", type=int, required=False, help="Port to bind (overrides reviewindex.yaml)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Serve the site over HTTP."""
    config = _load(ctx)
    if not config["owner"] or not config["repo"]:
        raise click.ClickException("Set 'owner' and 'repo' in reviewindex.yaml first.")
    from .server import SiteServer

    server = SiteServer(config, host=host, port=port)
    click.echo(f"Serving {config['owner']}/{config['repo']} at http://{server.host}:{server.port}")
    server.start()


async def _render_page(config: dict[str, Any], path: str):
    from .app import Request, create_site

    site = await create_site(config)
    try:
        return await site.handle(Request(path=path))
    finally:
        await site.aclose()


@cli.command()
@click.argument("kind", type=click.Choice(["review", "comparison"]))
@click.argument("slug")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
    help="Write the page to this file instead of stdout",
)
@click.pass_context
def render(ctx: click.Context, kind: str, slug: str, output: Path | None):
    """Render one page from the content store."""
    config = _load(ctx)
    if slug.endswith(".md"):
        slug = slug[:-3]
    response = asyncio.run(_render_page(config, f"/{kind}/{slug}"))
    if response.status != 200:
        click.echo(click.style(f"{kind} '{slug}' not found (HTTP {response.status})", fg="red"), err=True)
        raise SystemExit(1)
    if output is None:
        click.echo(response.text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(response.body)
    click.echo(f"Wrote {output}")


@cli.command()
@click.pass_context
def new(ctx: click.Context):
    """Create a new review or comparison draft interactively."""
    config = _load(ctx)
    project_root = Path.cwd()

    kind = questionary.select(
        "Select type:",
        choices=["review", "comparison"],
        style=_questionary_style(),
    ).ask()
    if kind is None:
        raise click.Abort()

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    description = questionary.text("Description:", style=_questionary_style()).ask()
    if description is None:
        raise click.Abort()

    categories = questionary.text(
        "Categories (comma separated):", style=_questionary_style()
    ).ask()
    if categories is None:
        raise click.Abort()

    data: dict[str, Any] = {
        "title": title,
        "description": description.strip(),
        "date": datetime.now(timezone.utc).strftime("%Y-%m-%d"),
        "categories": [c.strip() for c in categories.split(",") if c.strip()],
    }

    if kind == "comparison":
        products = questionary.text(
            "Products compared (comma separated):", style=_questionary_style()
        ).ask()
        if products is None:
            raise click.Abort()
        data["comparison_products"] = [p.strip() for p in products.split(",") if p.strip()]
    else:
        rating = questionary.select(
            "Rating:",
            choices=["5", "4", "3", "2", "1"],
            style=_questionary_style(),
        ).ask()
        if rating is None:
            raise click.Abort()
        data["rating"] = rating

    affiliate = questionary.text("Affiliate link (optional):", style=_questionary_style()).ask()
    if affiliate is None:
        raise click.Abort()
    if affiliate.strip():
        data["affiliate_link"] = affiliate.strip()

    target_dir = project_root / directories(config)[kind]
    target_path = target_dir / f"{slugify(title)}.md"
    if target_path.exists():
        raise click.ClickException(
            f"File already exists: {target_path.relative_to(project_root)}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(compose_document(data, _starter_body(kind, data)), encoding="utf-8")
    click.echo(f"Created {target_path.relative_to(project_root)}")


def _starter_body(kind: str, data: dict[str, Any]) -> str:
    title = data["title"]
    if kind == "comparison":
        products = data.get("comparison_products") or ["Product A", "Product B"]
        return (
            f"# {title}\n\n"
            f"**Overall Winner:** {products[0]}\n\n"
            "## Specifications\n\n"
            "| | " + " | ".join(products) + " |\n"
            "|---|" + "---|" * len(products) + "\n\n"
            "## Verdict\n"
        )
    lines = [f"# {title}", "", "## Pros and cons", "", "## Verdict", ""]
    if data.get("affiliate_link"):
        lines.append(f"[Check price]({data['affiliate_link']}){{: .btn .btn-primary}}")
    return "\n".join(lines)


@cli.command("cache-clear")
@click.pass_context
def cache_clear(ctx: click.Context):
    """Empty the SQLite page cache."""
    config = _load(ctx)
    if config["cache_backend"] != "sqlite":
        click.echo("The memory cache lives inside the server process; nothing to clear.")
        return
    from .cache import CacheStoreError, SqliteCacheStore

    async def clear() -> int:
        store = SqliteCacheStore(config["cache_path"])
        try:
            await store.init_db()
            return await store.clear()
        finally:
            await store.close()

    try:
        removed = asyncio.run(clear())
    except CacheStoreError as exc:
        raise click.ClickException(f"Cannot clear cache: {exc}") from None
    click.echo(f"Removed {removed} cached entries from {config['cache_path']}")


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()
