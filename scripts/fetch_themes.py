"""
Fetch all Slidev themes from npm and save them to a static JSON snapshot.

Each theme package found by the npm search API is enriched with screenshots
discovered in its GitHub repository and with its weekly download count.

Usage:
    python scripts/fetch_themes.py [output_path]
"""

import os
import re
import sys
import json
import math
import asyncio
import aiohttp
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from dataclasses import FrozenInstanceError, dataclass, field, replace

# ─── Configuration ────────────────────────────────────────────────────────────

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")

NPM_SEARCH_API = "https://registry.npmjs.org/-/v1/search"
NPM_DOWNLOADS_API = "https://api.npmjs.org/downloads/point/last-week"
NPM_PACKAGE_PAGE = "https://www.npmjs.com/package/{name}"
GITHUB_API = "https://api.github.com"
GITHUB_PROFILE = "https://github.com/{owner}"
RAW_CONTENT_BASE = "https://raw.githubusercontent.com/{owner}/{repo}/main"
SOCIAL_PREVIEW = "https://opengraph.githubassets.com/1/{owner}/{repo}"

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
REPO_ROOT = os.path.dirname(SCRIPT_DIR)
OUTPUT_FILE = os.path.join(REPO_ROOT, "public", "data", "themes.json")

SEARCH_TEXT = "keywords:slidev-theme"
PAGE_SIZE = 250                     # max allowed by npm search
DOWNLOAD_BATCH_SIZE = 128           # npm bulk downloads limit
SCREENSHOT_PAUSE = 0.5              # seconds between repos, GitHub courtesy
MAX_RETRIES = 3
RETRY_DELAY = 1                     # seconds, multiplied by attempt number
RATE_LIMIT_FLOOR = 50

OFFICIAL_PREFIX = "@slidev/theme-"
COMMUNITY_PREFIX = "slidev-theme-"
THEME_MARKERS = ("slidev-theme", "theme-")

SCREENSHOT_FOLDERS = ["screenshots", "assets/screenshots", "docs/screenshots", ".github/screenshots"]
README_IMAGE_LIMIT = 3
BADGE_MARKERS = ("shields.io", "badge", "icon")

SCOPED_COMMUNITY_PATTERN = re.compile(r"^@([^/]+)/slidev-theme-(.+)$")
GITHUB_REPO_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")
GITHUB_OWNER_PATTERN = re.compile(r"github\.com/([^/]+)")
IMAGE_FILE_PATTERN = re.compile(r"\.(png|jpe?g|gif|webp)$", re.IGNORECASE)
MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[.*?\]\((.*?\.(?:png|jpe?g|gif|webp))\)", re.IGNORECASE)
HTML_IMAGE_PATTERN = re.compile(r"<img[^>]+src=[\"']([^\"']+\.(?:png|jpe?g|gif|webp))[\"']", re.IGNORECASE)

# ─── Errors ────────────────────────────────────────────────────────────────────


class ThemeFetchError(Exception):
    """Base class for pipeline fetch failures."""


class HTTPError(ThemeFetchError):
    def __init__(self, status: int, url: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"HTTP {status}")
        self.status = status
        self.url = url


class NotFoundError(HTTPError):
    """404 from any endpoint. Never retried."""

    def __init__(self, url: Optional[str] = None):
        super().__init__(404, url, "Not found")


# Failures a discovery stage or a download batch treats as "nothing found".
TRANSPORT_ERRORS = (ThemeFetchError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)

# ─── Data classes ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class ThemeRecord:
    """One theme package in the catalog."""
    id: str
    package_name: str
    name: str
    is_official: bool
    fetched_at: str
    description: Optional[str] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    version: Optional[str] = None
    repository_url: Optional[str] = None
    npm_url: Optional[str] = None
    demo_url: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    downloads: Optional[int] = None
    updated_at: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    thumbnail_url: Optional[str] = None

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise FrozenInstanceError(f"cannot assign to field {name!r}")
        super().__setattr__(name, value)

    def frozen_copy(self) -> "ThemeRecord":
        """Read-only copy; list fields become tuples."""
        copy = replace(self, screenshots=tuple(self.screenshots), keywords=tuple(self.keywords))
        object.__setattr__(copy, "_frozen", True)
        return copy

    def to_dict(self) -> Dict[str, Any]:
        """Convert to output format. Unknown optional fields are left out."""
        data = {
            "id": self.id,
            "packageName": self.package_name,
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "authorUrl": self.author_url,
            "version": self.version,
            "repositoryUrl": self.repository_url,
            "npmUrl": self.npm_url,
            "demoUrl": self.demo_url,
            "screenshots": list(self.screenshots),
            "downloads": self.downloads,
            "updatedAt": self.updated_at,
            "keywords": list(self.keywords),
            "isOfficial": self.is_official,
            "fetchedAt": self.fetched_at,
            "thumbnailUrl": self.thumbnail_url,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThemeRecord":
        return cls(
            id=data["id"],
            package_name=data["packageName"],
            name=data.get("name") or format_display_name(data["id"]),
            is_official=bool(data.get("isOfficial", False)),
            fetched_at=data.get("fetchedAt", ""),
            description=data.get("description"),
            author=data.get("author"),
            author_url=data.get("authorUrl"),
            version=data.get("version"),
            repository_url=data.get("repositoryUrl"),
            npm_url=data.get("npmUrl"),
            demo_url=data.get("demoUrl"),
            screenshots=list(data.get("screenshots") or []),
            downloads=data.get("downloads"),
            updated_at=data.get("updatedAt"),
            keywords=list(data.get("keywords") or []),
            thumbnail_url=data.get("thumbnailUrl"),
        )


@dataclass(frozen=True)
class CatalogSnapshot:
    """Sorted, immutable output of one pipeline run."""
    records: Tuple[ThemeRecord, ...]
    fetched_at: str
    total: int
    official: int
    community: int
    with_screenshots: int

    @classmethod
    def from_records(cls, themes: List[ThemeRecord], fetched_at: str) -> "CatalogSnapshot":
        ordered = tuple(
            t.frozen_copy() for t in sorted(themes, key=lambda t: t.downloads or 0, reverse=True)
        )
        official = sum(1 for t in ordered if t.is_official)
        return cls(
            records=ordered,
            fetched_at=fetched_at,
            total=len(ordered),
            official=official,
            community=len(ordered) - official,
            with_screenshots=sum(1 for t in ordered if t.screenshots),
        )

    def to_json(self) -> str:
        return json.dumps([t.to_dict() for t in self.records], indent=2, ensure_ascii=False)


# ─── Identifiers ───────────────────────────────────────────────────────────────


def extract_theme_id(package_name: str) -> str:
    """
    @slidev/theme-xxx -> xxx, slidev-theme-xxx -> xxx,
    @org/slidev-theme-xxx -> org/xxx, anything else unchanged.
    """
    if package_name.startswith(OFFICIAL_PREFIX):
        return package_name[len(OFFICIAL_PREFIX):]
    if package_name.startswith(COMMUNITY_PREFIX):
        return package_name[len(COMMUNITY_PREFIX):]
    match = SCOPED_COMMUNITY_PATTERN.match(package_name)
    if match:
        return f"{match.group(1)}/{match.group(2)}"
    return package_name


def is_official_theme(package_name: str) -> bool:
    return package_name.startswith(OFFICIAL_PREFIX)


def format_display_name(theme_id: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[-_/]", theme_id))


def is_theme_candidate(package_name: str) -> bool:
    return any(marker in package_name for marker in THEME_MARKERS)


# ─── Repositories ──────────────────────────────────────────────────────────────


def parse_repository_url(url: Optional[str]) -> Optional[RepoRef]:
    if not url:
        return None
    match = GITHUB_REPO_PATTERN.search(url)
    if not match:
        return None
    return RepoRef(owner=match.group(1), repo=re.sub(r"\.git$", "", match.group(2)))


def extract_owner_handle(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = GITHUB_OWNER_PATTERN.search(url)
    return match.group(1) if match else None


def strip_git_suffix(url: Optional[str]) -> Optional[str]:
    if not url:
        return url
    return re.sub(r"\.git$", "", url)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ─── Async HTTP layer ──────────────────────────────────────────────────────────


class ThemeClient:
    """Async HTTP client with retry and GitHub rate-limit awareness."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, token: Optional[str] = GITHUB_TOKEN):
        self._session = session
        self._owns_session = session is None
        self._token = token
        self._request_count = 0
        self._rate_remaining = 5000
        self._rate_reset: Optional[float] = None
        self.sleep = asyncio.sleep

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc):
        if self._owns_session and self._session:
            await self._session.close()

    @property
    def request_count(self) -> int:
        return self._request_count

    def github_headers(self, raw: bool = False) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3.raw" if raw else "application/vnd.github.v3+json",
        }
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    async def _wait_for_rate_limit(self):
        """Pause if we're close to hitting the rate limit."""
        if self._rate_remaining < RATE_LIMIT_FLOOR and self._rate_reset:
            wait = self._rate_reset - time.time() + 2
            if wait > 0:
                print(f"  ⏳ Rate limit low ({self._rate_remaining}), waiting {wait:.0f}s...")
                await self.sleep(wait)
            self._rate_reset = None

    def _update_rate_info(self, headers):
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is not None:
            self._rate_remaining = int(remaining)
        if reset is not None:
            self._rate_reset = float(reset)

    async def fetch_with_retry(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict] = None,
        as_text: bool = False,
        max_attempts: int = MAX_RETRIES,
    ) -> Any:
        """
        GET ``url`` and return the parsed body (JSON, or text when ``as_text``).

        404 raises NotFoundError at once. Other failures are retried with a
        linear backoff of RETRY_DELAY * attempt; the last error is raised.
        """
        await self._wait_for_rate_limit()
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session.get(url, headers=headers, params=params) as resp:
                    self._request_count += 1
                    self._update_rate_info(resp.headers)

                    if 200 <= resp.status < 300:
                        if as_text:
                            return await resp.text()
                        return await resp.json(content_type=None)

                    if resp.status == 404:
                        raise NotFoundError(url)
                    raise HTTPError(resp.status, url)

            except NotFoundError:
                raise
            except (HTTPError, aiohttp.ClientError, asyncio.TimeoutError):
                if attempt == max_attempts:
                    raise
                await self.sleep(RETRY_DELAY * attempt)

        raise ThemeFetchError("Max retries reached")


# ─── Screenshot discovery ──────────────────────────────────────────────────────


def is_badge(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in BADGE_MARKERS)


def resolve_image_url(url: str, base: str) -> str:
    if url.startswith("http"):
        return url
    if url.startswith("/"):
        return f"{base}{url}"
    return f"{base}/{url}"


def extract_readme_images(readme: str, repo: RepoRef, limit: int = README_IMAGE_LIMIT) -> List[str]:
    """Markdown images first, then <img> tags, each in document order."""
    found = [m.group(1) for m in MARKDOWN_IMAGE_PATTERN.finditer(readme)]
    found += [m.group(1) for m in HTML_IMAGE_PATTERN.finditer(readme)]
    base = RAW_CONTENT_BASE.format(owner=repo.owner, repo=repo.repo)
    images = [resolve_image_url(url, base) for url in found if url and not is_badge(url)]
    return images[:limit]


async def probe_screenshot_folders(client: ThemeClient, repo: RepoRef) -> Optional[List[str]]:
    for folder in SCREENSHOT_FOLDERS:
        url = f"{GITHUB_API}/repos/{repo.owner}/{repo.repo}/contents/{folder}"
        try:
            contents = await client.fetch_with_retry(url, headers=client.github_headers())
        except TRANSPORT_ERRORS:
            continue

        if not isinstance(contents, list):
            continue

        images = sorted(
            (
                entry for entry in contents
                if entry.get("type") == "file" and IMAGE_FILE_PATTERN.search(entry.get("name", ""))
            ),
            key=lambda entry: entry.get("path", ""),
        )
        screenshots = [entry["download_url"] for entry in images if entry.get("download_url")]
        if screenshots:
            print(f"  ✓ Found {len(screenshots)} screenshots in {folder}")
            return screenshots
    return None


async def scan_readme_images(client: ThemeClient, repo: RepoRef) -> Optional[List[str]]:
    url = f"{GITHUB_API}/repos/{repo.owner}/{repo.repo}/readme"
    try:
        readme = await client.fetch_with_retry(url, headers=client.github_headers(raw=True), as_text=True)
    except TRANSPORT_ERRORS:
        return None

    screenshots = extract_readme_images(readme, repo)
    if screenshots:
        print(f"  ✓ Extracted {len(screenshots)} screenshots from README")
        return screenshots
    return None


async def social_preview_image(client: ThemeClient, repo: RepoRef) -> Optional[List[str]]:
    return [SOCIAL_PREVIEW.format(owner=repo.owner, repo=repo.repo)]


# Tried in order; the first strategy returning a non-empty list wins.
SCREENSHOT_STRATEGIES = [probe_screenshot_folders, scan_readme_images, social_preview_image]


async def discover_screenshots(client: ThemeClient, repository_url: str) -> List[str]:
    repo = parse_repository_url(repository_url)
    if repo is None:
        return []

    for strategy in SCREENSHOT_STRATEGIES:
        found = await strategy(client, repo)
        if found:
            return found
    return []


# ─── Registry harvest ──────────────────────────────────────────────────────────


def make_record(pkg: Dict, fetched_at: str) -> ThemeRecord:
    name = pkg["name"]
    links = pkg.get("links") or {}
    author = pkg.get("author") or {}
    publisher = pkg.get("publisher") or {}
    repository_url = strip_git_suffix(links.get("repository"))
    owner = extract_owner_handle(repository_url)
    theme_id = extract_theme_id(name)

    return ThemeRecord(
        id=theme_id,
        package_name=name,
        name=format_display_name(theme_id),
        is_official=is_official_theme(name),
        fetched_at=fetched_at,
        description=pkg.get("description"),
        author=author.get("name") or author.get("username") or publisher.get("username"),
        author_url=author.get("url") or (GITHUB_PROFILE.format(owner=owner) if owner else None),
        version=pkg.get("version"),
        repository_url=repository_url,
        npm_url=links.get("npm") or NPM_PACKAGE_PAGE.format(name=name),
        demo_url=links.get("homepage"),
        updated_at=pkg.get("date"),
        keywords=list(pkg.get("keywords") or []),
    )


async def harvest(
    client: ThemeClient,
    fetched_at: Optional[str] = None,
    pause: float = SCREENSHOT_PAUSE,
) -> List[ThemeRecord]:
    """Page through the npm search API and build a record per theme package."""
    print("🔍 Fetching themes from npm...")
    fetched_at = fetched_at or utc_timestamp()
    themes: List[ThemeRecord] = []
    seen: Set[str] = set()
    offset = 0

    while True:
        data = await client.fetch_with_retry(
            NPM_SEARCH_API,
            params={"text": SEARCH_TEXT, "size": PAGE_SIZE, "from": offset},
        )
        objects = data.get("objects", [])
        if not objects:
            break

        for obj in objects:
            pkg = obj.get("package") or {}
            name = pkg.get("name", "")
            if not is_theme_candidate(name) or name in seen:
                continue
            seen.add(name)

            print(f"\n📦 Processing: {name}")
            theme = make_record(pkg, fetched_at)

            if theme.repository_url:
                try:
                    theme.screenshots = await discover_screenshots(client, theme.repository_url)
                    await client.sleep(pause)
                except Exception as e:
                    print(f"  ⚠ Failed to fetch screenshots: {e}", file=sys.stderr)

            themes.append(theme)

        offset += len(objects)
        total = data.get("total", 0)
        if offset >= total:
            break

        print(f"\n📊 Progress: {offset}/{total}")

    print(f"\n✅ Fetched {len(themes)} themes")
    return themes


# ─── Download counts ───────────────────────────────────────────────────────────


def apply_download_counts(batch: List[ThemeRecord], data: Any) -> None:
    if not isinstance(data, dict) or not batch:
        return

    if data.get("downloads") is not None:
        # Single-package response shape: only the batch's first record is
        # assigned, even if the batch held more names.
        batch[0].downloads = data["downloads"]
        return

    for theme in batch:
        entry = data.get(theme.package_name)
        if isinstance(entry, dict) and entry.get("downloads") is not None:
            theme.downloads = entry["downloads"]


async def enrich_downloads(
    client: ThemeClient,
    themes: List[ThemeRecord],
    batch_size: int = DOWNLOAD_BATCH_SIZE,
) -> None:
    print("\n📊 Fetching download counts...")
    batch_count = math.ceil(len(themes) / batch_size)

    for index, start in enumerate(range(0, len(themes), batch_size), 1):
        batch = themes[start : start + batch_size]
        names = ",".join(t.package_name for t in batch)

        try:
            data = await client.fetch_with_retry(f"{NPM_DOWNLOADS_API}/{names}")
        except TRANSPORT_ERRORS as e:
            print(f"  ⚠ Failed to fetch downloads for batch {index}/{batch_count}: {e}", file=sys.stderr)
            continue

        apply_download_counts(batch, data)
        print(f"  ✓ Batch {index}/{batch_count}")


# ─── Catalog assembly ──────────────────────────────────────────────────────────


async def build_catalog(client: ThemeClient, pause: float = SCREENSHOT_PAUSE) -> CatalogSnapshot:
    fetched_at = utc_timestamp()
    themes = await harvest(client, fetched_at, pause)
    await enrich_downloads(client, themes)
    return CatalogSnapshot.from_records(themes, fetched_at)


def save_snapshot(snapshot: CatalogSnapshot, path: str = OUTPUT_FILE) -> int:
    """Write the snapshot JSON array and return its size in bytes."""
    payload = snapshot.to_json()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload)
    return len(payload.encode("utf-8"))


async def report_rate_limit(client: ThemeClient) -> Optional[int]:
    try:
        data = await client.fetch_with_retry(
            f"{GITHUB_API}/rate_limit", headers=client.github_headers(), max_attempts=1
        )
    except TRANSPORT_ERRORS:
        return None

    core = data.get("resources", {}).get("core", {})
    remaining = core.get("remaining", 0)
    print(f"GitHub API: {remaining}/{core.get('limit', 0)} requests remaining\n")
    if remaining < 500:
        print("WARNING: Low rate limit!", file=sys.stderr)
    return remaining


# ─── Main orchestrator ─────────────────────────────────────────────────────────


async def main(output_file: str = OUTPUT_FILE) -> CatalogSnapshot:
    start = time.time()
    print("🚀 Starting theme collection...\n")

    if not GITHUB_TOKEN:
        print("⚠️  GITHUB_TOKEN not set - API rate limits will be lower", file=sys.stderr)

    async with ThemeClient() as client:
        await report_rate_limit(client)

        snapshot = await build_catalog(client)

        print("\n💾 Saving to JSON...")
        size = save_snapshot(snapshot, output_file)
        print(f"\n✅ Successfully saved {snapshot.total} themes to {output_file}")

        elapsed = time.time() - start
        print(f"\n{'='*60}")
        print("📈 Summary:")
        print(f"  Total themes: {snapshot.total}")
        print(f"  Official: {snapshot.official}")
        print(f"  Community: {snapshot.community}")
        print(f"  With screenshots: {snapshot.with_screenshots}")
        print(f"  File size: {size / 1024:.2f} KB")
        print(f"  Done in {elapsed:.0f}s, {client.request_count} API requests")
        print(f"{'='*60}")

    return snapshot


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else OUTPUT_FILE
    try:
        asyncio.run(main(target))
    except Exception as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        sys.exit(1)
