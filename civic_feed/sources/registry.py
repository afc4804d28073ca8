from __future__ import annotations

from typing import Callable, Dict

from ..models import Settings
from .base import ContentSource
from .duckdb_store import DuckDBContentSource
from .http_api import HttpContentSource

SOURCE_REGISTRY: Dict[str, Callable[[Settings], ContentSource]] = {
    "duckdb": lambda settings: DuckDBContentSource(settings.storage),
    "http": lambda settings: HttpContentSource(settings.source),
}


def build_source(settings: Settings) -> ContentSource:
    factory = SOURCE_REGISTRY.get(settings.source.kind)
    if factory is None:
        raise ValueError(f"No content source registered for {settings.source.kind!r}")
    return factory(settings)
