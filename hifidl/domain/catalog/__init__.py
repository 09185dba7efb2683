"""Catalog domain services (album metadata, media URLs, lyrics)."""

from .providers import CatalogProvider, CatalogRegistry
from .qobuz import QobuzCatalog
from .tidal import TidalCatalog
from .lyrics_service import LyricsResolver, build_lyrics_resolver

__all__ = [
    "CatalogProvider",
    "CatalogRegistry",
    "QobuzCatalog",
    "TidalCatalog",
    "LyricsResolver",
    "build_lyrics_resolver",
]
