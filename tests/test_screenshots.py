from __future__ import annotations

import pytest

from conftest import FakeResponse
from fetch_themes import (
    GITHUB_API,
    RepoRef,
    SCREENSHOT_FOLDERS,
    discover_screenshots,
    extract_readme_images,
    is_badge,
    resolve_image_url,
)

REPO_URL = "https://github.com/foo/bar"
RAW = "https://raw.githubusercontent.com/foo/bar/main"
CONTENTS = f"{GITHUB_API}/repos/foo/bar/contents"
README = f"{GITHUB_API}/repos/foo/bar/readme"
PREVIEW = "https://opengraph.githubassets.com/1/foo/bar"


def file_entry(path: str, kind: str = "file") -> dict:
    return {
        "type": kind,
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "download_url": f"{RAW}/{path}" if kind == "file" else None,
    }


def test_first_folder_is_path_sorted_and_stops(client, session, run) -> None:
    session.routes[f"{CONTENTS}/screenshots"] = FakeResponse(
        200,
        [
            file_entry("screenshots/b.png"),
            file_entry("screenshots/a.png"),
            file_entry("screenshots/notes.md"),
            file_entry("screenshots/nested", kind="dir"),
        ],
    )

    shots = run(discover_screenshots(client, REPO_URL))

    assert shots == [f"{RAW}/screenshots/a.png", f"{RAW}/screenshots/b.png"]
    assert session.urls() == [f"{CONTENTS}/screenshots"]


def test_later_folder_used_when_earlier_ones_missing(client, session, run) -> None:
    session.routes[f"{CONTENTS}/docs/screenshots"] = FakeResponse(
        200, [file_entry("docs/screenshots/Cover.JPG"), file_entry("docs/screenshots/dark.webp")]
    )

    shots = run(discover_screenshots(client, REPO_URL))

    assert shots == [f"{RAW}/docs/screenshots/Cover.JPG", f"{RAW}/docs/screenshots/dark.webp"]
    assert README not in session.urls()
    assert f"{CONTENTS}/.github/screenshots" not in session.urls()


def test_folder_without_images_falls_through(client, session, run) -> None:
    session.routes[f"{CONTENTS}/screenshots"] = FakeResponse(200, [file_entry("screenshots/README.md")])
    session.routes[f"{CONTENTS}/assets/screenshots"] = FakeResponse(200, [file_entry("assets/screenshots/1.gif")])

    assert run(discover_screenshots(client, REPO_URL)) == [f"{RAW}/assets/screenshots/1.gif"]


def test_readme_images_used_without_folders(client, session, run) -> None:
    session.routes[README] = FakeResponse(
        200,
        text=(
            "# Theme\n"
            "[![npm](https://img.shields.io/npm/v/slidev-theme-bar.png)](https://npmjs.com)\n"
            "![x](shot1.png)\n"
        ),
    )

    shots = run(discover_screenshots(client, REPO_URL))

    assert shots == [f"{RAW}/shot1.png"]
    folder_calls = [url for url in session.urls() if url.startswith(CONTENTS)]
    assert folder_calls == [f"{CONTENTS}/{folder}" for folder in SCREENSHOT_FOLDERS]


def test_readme_request_asks_for_raw_body(client, session, run) -> None:
    session.routes[README] = FakeResponse(200, text="![x](shot1.png)")

    run(discover_screenshots(client, REPO_URL))

    readme_call = [call for call in session.calls if call.url == README][0]
    assert readme_call.headers["Accept"] == "application/vnd.github.v3.raw"


def test_social_preview_fallback(client, session, run) -> None:
    session.routes[README] = FakeResponse(200, text="No pictures here.")

    assert run(discover_screenshots(client, REPO_URL)) == [PREVIEW]


def test_failing_stages_are_treated_as_empty(client, session, sleeps, run) -> None:
    for folder in SCREENSHOT_FOLDERS:
        session.routes[f"{CONTENTS}/{folder}"] = FakeResponse(500)
    session.routes[README] = FakeResponse(500)

    assert run(discover_screenshots(client, REPO_URL)) == [PREVIEW]
    assert len(sleeps) == 2 * (len(SCREENSHOT_FOLDERS) + 1)


def test_unparseable_repository_short_circuits(client, session, run) -> None:
    assert run(discover_screenshots(client, "https://gitlab.com/foo/bar")) == []
    assert session.calls == []


def test_readme_markdown_before_html_and_capped() -> None:
    readme = (
        '<img src="html-first.png" width="400">\n'
        "![one](one.png)\n"
        "![two](/docs/two.jpg)\n"
        "![three](https://cdn.example.com/three.gif)\n"
        "![four](four.png)\n"
    )

    images = extract_readme_images(readme, RepoRef("foo", "bar"))

    assert images == [
        f"{RAW}/one.png",
        f"{RAW}/docs/two.jpg",
        "https://cdn.example.com/three.gif",
    ]


def test_readme_html_images_follow_markdown() -> None:
    readme = '<p><img alt="cover" src="./cover.png"/></p>\n![shot](shot.png)'

    images = extract_readme_images(readme, RepoRef("foo", "bar"), limit=5)

    assert images == [f"{RAW}/shot.png", f"{RAW}/./cover.png"]


@pytest.mark.parametrize(
    "url, badge",
    [
        ("https://img.shields.io/npm/v/x.png", True),
        ("https://example.com/Badge.png", True),
        ("assets/ICON.png", True),
        ("screenshots/cover.png", False),
    ],
)
def test_is_badge(url: str, badge: bool) -> None:
    assert is_badge(url) is badge


def test_resolve_image_url() -> None:
    assert resolve_image_url("https://x.test/a.png", RAW) == "https://x.test/a.png"
    assert resolve_image_url("/a.png", RAW) == f"{RAW}/a.png"
    assert resolve_image_url("img/a.png", RAW) == f"{RAW}/img/a.png"
