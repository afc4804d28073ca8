from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from pydantic import BaseModel

from ..config import load_settings, merge_weights, parse_weight_overrides
from ..errors import ConfigurationError
from ..models import ContentItem, Settings
from ..pipeline.coordinator import FeedEngine
from ..sources.duckdb_store import write_posts, write_relations
from ..sources.registry import build_source
from ..utils.logging import configure_logging

app = typer.Typer(add_completion=False, help="Feed generation utilities for the civic network")

SETTINGS_OPTION = typer.Option(Path("config/settings.yml"), help="Path to runtime settings")


def _load(settings: Path, log_level: str) -> Settings:
    configure_logging(log_level)
    try:
        return load_settings(settings)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _run_with_engine(cfg: Settings, call: Callable[[FeedEngine], Awaitable[BaseModel]]) -> None:
    async def _run() -> BaseModel:
        source = build_source(cfg)
        try:
            return await call(FeedEngine(source, cfg))
        finally:
            await source.close()

    try:
        result = asyncio.run(_run())
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    typer.echo(result.model_dump_json(indent=2, by_alias=True))


@app.command()
def load(
    data: Path = typer.Argument(..., help="JSON file with posts, follows, friendships, likes and reputations"),
    settings: Path = SETTINGS_OPTION,
    log_level: str = typer.Option("INFO", help="Logging level"),
):
    """Load posts and social-graph rows into the DuckDB store."""

    cfg = _load(settings, log_level)
    payload: dict[str, Any] = json.loads(data.read_text(encoding="utf-8"))
    posts = [ContentItem.model_validate(raw) for raw in payload.get("posts", [])]
    count = write_posts(posts, cfg.storage)
    write_relations(
        cfg.storage,
        follows=[tuple(pair) for pair in payload.get("follows", [])],
        friendships=[tuple(pair) for pair in payload.get("friendships", [])],
        likes=[tuple(pair) for pair in payload.get("likes", [])],
        reputations=payload.get("reputations") or {},
    )
    typer.echo(f"Loaded {count} posts into {cfg.storage.path}")


@app.command()
def feed(
    viewer: Optional[str] = typer.Option(None, help="Viewer user id; omit for an anonymous feed"),
    limit: int = typer.Option(20, min=1, help="Page size"),
    offset: int = typer.Option(0, min=0, help="Page offset"),
    seed: Optional[int] = typer.Option(None, help="Fix the sampler seed to replay an ordering"),
    weights: Optional[str] = typer.Option(None, help='Weight overrides, e.g. "recency=0.5,randomness=0" or JSON'),
    settings: Path = SETTINGS_OPTION,
    log_level: str = typer.Option("WARNING", help="Logging level"),
):
    """Generate one page of the probability-cloud feed."""

    cfg = _load(settings, log_level)
    try:
        overrides = parse_weight_overrides(weights)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--weights") from exc
    _run_with_engine(cfg, lambda engine: engine.safe_feed_page(viewer, limit, offset, weights=overrides, seed=seed))


@app.command()
def following(
    viewer: str = typer.Option(..., help="Viewer user id"),
    limit: int = typer.Option(20, min=1),
    offset: int = typer.Option(0, min=0),
    settings: Path = SETTINGS_OPTION,
    log_level: str = typer.Option("WARNING", help="Logging level"),
):
    """Posts from followed users and friends, newest first."""

    cfg = _load(settings, log_level)
    _run_with_engine(cfg, lambda engine: engine.get_following_page(viewer, limit, offset))


@app.command()
def trending(
    hours: int = typer.Option(24, min=1, help="Only consider posts from the last N hours"),
    limit: int = typer.Option(20, min=1),
    offset: int = typer.Option(0, min=0),
    settings: Path = SETTINGS_OPTION,
    log_level: str = typer.Option("WARNING", help="Logging level"),
):
    """Rank recent public posts by engagement score."""

    cfg = _load(settings, log_level)
    _run_with_engine(cfg, lambda engine: engine.safe_trending_page(hours, limit, offset))


@app.command("slot-roll")
def slot_roll(
    viewer: Optional[str] = typer.Option(None, help="Viewer user id; omit for the public feed"),
    slots: int = typer.Option(15, min=1, max=50, help="Number of slots to roll"),
    exclude: Optional[str] = typer.Option(None, help="Comma-separated post ids already shown"),
    seed: Optional[int] = typer.Option(None, help="Fix the roll seed to replay a feed"),
    settings: Path = SETTINGS_OPTION,
    log_level: str = typer.Option("WARNING", help="Logging level"),
):
    """Fill each slot from the random, trending or personalized pool its roll selects."""

    cfg = _load(settings, log_level)
    exclude_ids = [item_id.strip() for item_id in (exclude or "").split(",") if item_id.strip()]
    _run_with_engine(cfg, lambda engine: engine.safe_slot_roll_feed(viewer, slots, exclude_ids=exclude_ids, seed=seed))


@app.command()
def weights(
    overrides: Optional[str] = typer.Argument(None, help="Optional overrides to merge over the defaults"),
    settings: Path = SETTINGS_OPTION,
):
    """Print the effective sampler weights."""

    cfg = _load(settings, "WARNING")
    try:
        effective = merge_weights(cfg.feed.default_weights, parse_weight_overrides(overrides))
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    typer.echo(json.dumps(effective.as_map(), indent=2))


if __name__ == "__main__":  # pragma: no cover
    app()
