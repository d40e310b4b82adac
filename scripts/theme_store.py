"""
Client-side theme store.

Loads the static snapshot written by fetch_themes.py (falling back to the
live npm pipeline when it is missing) and exposes filtered, sorted views.
"""

import sys
import json
import asyncio
import threading
import requests
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fetch_themes import (
    COMMUNITY_PREFIX,
    OFFICIAL_PREFIX,
    OUTPUT_FILE,
    ThemeClient,
    ThemeRecord,
    build_catalog,
    parse_repository_url,
    SOCIAL_PREVIEW,
)

SORT_OPTIONS = ("downloads", "name", "updated")
SEARCH_DEBOUNCE = 0.3  # seconds
STATIC_TIMEOUT = 10

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ─── Loading ───────────────────────────────────────────────────────────────────


def fallback_thumbnail(repository_url: Optional[str]) -> Optional[str]:
    repo = parse_repository_url(repository_url)
    if repo is None:
        return None
    return SOCIAL_PREVIEW.format(owner=repo.owner, repo=repo.repo)


def thumbnail_for(theme: ThemeRecord) -> Optional[str]:
    if theme.screenshots:
        return theme.screenshots[0]
    return fallback_thumbnail(theme.repository_url)


def with_thumbnail(theme: ThemeRecord) -> ThemeRecord:
    return replace(theme, thumbnail_url=thumbnail_for(theme))


def read_static_snapshot(location: str) -> List[Dict[str, Any]]:
    """Read a snapshot from a local path or an http(s) URL."""
    if location.startswith(("http://", "https://")):
        response = requests.get(location, timeout=STATIC_TIMEOUT)
        response.raise_for_status()
        return response.json()

    with open(location, "r", encoding="utf-8") as f:
        return json.load(f)


def fetch_live_catalog() -> List[ThemeRecord]:
    """Run the full pipeline without a snapshot."""

    async def run():
        async with ThemeClient() as client:
            snapshot = await build_catalog(client)
        return list(snapshot.records)

    return asyncio.run(run())


def load_themes_data(
    location: str = OUTPUT_FILE,
    live: Callable[[], List[ThemeRecord]] = fetch_live_catalog,
) -> List[ThemeRecord]:
    """Load themes from the static snapshot, falling back to the live pipeline."""
    try:
        data = read_static_snapshot(location)
        themes = [with_thumbnail(ThemeRecord.from_dict(item)) for item in data]
        print("✓ Loaded themes from static data")
        return themes
    except (OSError, ValueError, KeyError, TypeError, requests.RequestException) as e:
        print(f"⚠ Failed to load static data, falling back to live API: {e}", file=sys.stderr)

    return [with_thumbnail(theme) for theme in live()]


# ─── Store ─────────────────────────────────────────────────────────────────────


class ThemeStore:
    """
    Owns the loaded catalog and the user's view state.

    ``load()`` runs the loader at most once; the derived views are recomputed
    from the current state on every call.
    """

    def __init__(self, loader: Callable[[], List[ThemeRecord]] = load_themes_data):
        self._loader = loader
        self._loaded = False
        self.themes: List[ThemeRecord] = []
        self.loading = False
        self.error: Optional[str] = None
        self.search_query = ""
        self.filter = {"official": True, "community": True}
        self.sort_option = "downloads"
        self.focused_theme_id: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def total_count(self) -> int:
        return len(self.themes)

    def load(self) -> None:
        if self._loaded or self.loading:
            return

        self.loading = True
        self.error = None
        try:
            self.themes = list(self._loader())
            self._loaded = True
        except Exception as e:
            self.error = str(e) or "Failed to fetch themes"
            print(f"Failed to fetch themes: {e}", file=sys.stderr)
        finally:
            self.loading = False

    # Views

    def _matches_query(self, theme: ThemeRecord, query: str) -> bool:
        fields = (theme.name, theme.description, theme.author)
        return any(value and query in value.lower() for value in fields)

    def _matches_filter(self, theme: ThemeRecord) -> bool:
        if theme.is_official:
            return self.filter["official"]
        return self.filter["community"]

    def filtered_themes(self) -> List[ThemeRecord]:
        result = list(self.themes)

        if self.search_query:
            query = self.search_query.lower()
            result = [t for t in result if self._matches_query(t, query)]

        result = [t for t in result if self._matches_filter(t)]

        if self.sort_option == "downloads":
            result.sort(key=lambda t: t.downloads or 0, reverse=True)
        elif self.sort_option == "name":
            result.sort(key=lambda t: t.name.casefold())
        elif self.sort_option == "updated":
            result.sort(key=lambda t: parse_timestamp(t.updated_at), reverse=True)

        return result

    def official_themes(self) -> List[ThemeRecord]:
        return [t for t in self.filtered_themes() if t.is_official]

    def community_themes(self) -> List[ThemeRecord]:
        return [t for t in self.filtered_themes() if not t.is_official]

    # Actions

    def set_search_query(self, query: str) -> None:
        self.search_query = query

    def set_filter(self, **changes: bool) -> None:
        unknown = set(changes) - set(self.filter)
        if unknown:
            raise ValueError(f"Unknown filter keys: {', '.join(sorted(unknown))}")
        self.filter = {**self.filter, **changes}

    def set_sort_option(self, option: str) -> None:
        if option not in SORT_OPTIONS:
            raise ValueError(f"Invalid sort option: {option}")
        self.sort_option = option

    def set_focused_theme(self, theme_id: Optional[str]) -> None:
        self.focused_theme_id = theme_id

    def get_theme_by_name(self, name: str) -> Optional[ThemeRecord]:
        candidates = {name, f"{COMMUNITY_PREFIX}{name}", f"{OFFICIAL_PREFIX}{name}"}
        for theme in self.themes:
            if theme.name == name or theme.package_name in candidates:
                return theme
        return None


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ─── Debounce ──────────────────────────────────────────────────────────────────


class Debounced:
    """Runs ``fn`` with the last argument once calls stop for ``delay`` seconds."""

    def __init__(self, fn: Callable[[Any], Any], delay: float = SEARCH_DEBOUNCE):
        self._fn = fn
        self._delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def __call__(self, arg: Any) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fn, args=(arg,))
            self._timer.daemon = True
            self._timer.start()

    @property
    def pending(self) -> bool:
        timer = self._timer
        return timer is not None and timer.is_alive()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


def debounce(fn: Callable[[Any], Any], delay: float = SEARCH_DEBOUNCE) -> Debounced:
    return Debounced(fn, delay)


def main(argv=None, loader: Optional[Callable[[], List[ThemeRecord]]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    location = argv[0] if argv else OUTPUT_FILE
    store = ThemeStore(loader or (lambda: load_themes_data(location)))
    store.load()
    if store.error:
        print(f"❌ {store.error}", file=sys.stderr)
        return 1

    for theme in store.filtered_themes()[:20]:
        tag = "official" if theme.is_official else "community"
        print(f"{theme.downloads or 0:>8}  {theme.name:<30} {tag:<10} {theme.thumbnail_url or ''}")
    print(f"\n{store.total_count} themes loaded")
    return 0


if __name__ == "__main__":
    sys.exit(main())
