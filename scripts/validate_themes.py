#!/usr/bin/env python3
"""
Theme Snapshot Validation Script

This script validates a themes.json snapshot written by fetch_themes.py:
structural checks over every record, then a live comparison of versions
and download counts against npm for the first few records.

Usage:
    python validate_themes.py [snapshot_path]

Examples:
    python validate_themes.py public/data/themes.json
    python validate_themes.py  # validates the default output file
"""

import json
import sys
import requests
from pathlib import Path
from urllib.parse import quote

from fetch_themes import (
    NPM_DOWNLOADS_API,
    OUTPUT_FILE,
    extract_theme_id,
    is_official_theme,
)

NPM_REGISTRY_API = "https://registry.npmjs.org"
LIVE_CHECK_LIMIT = 10  # Validate first 10 to conserve quota
REQUEST_TIMEOUT = 10


def check_structure(themes: list) -> list:
    """Return a list of problems found in the snapshot records."""
    problems = []
    seen = set()

    for index, theme in enumerate(themes):
        name = theme.get("packageName")
        if not name:
            problems.append(f"record {index}: missing packageName")
            continue

        if name in seen:
            problems.append(f"{name}: duplicate packageName")
        seen.add(name)

        if theme.get("id") != extract_theme_id(name):
            problems.append(f"{name}: id {theme.get('id')!r} does not match package name")

        if bool(theme.get("isOfficial")) != is_official_theme(name):
            problems.append(f"{name}: isOfficial flag is wrong")

    counts = [theme.get("downloads") or 0 for theme in themes]
    if any(a < b for a, b in zip(counts, counts[1:])):
        problems.append("snapshot is not sorted by downloads")

    return problems


def fetch_theme_details(package_name: str) -> dict:
    """Fetch the full registry document for one package."""
    url = f"{NPM_REGISTRY_API}/{quote(package_name, safe='@')}"
    response = requests.get(url, timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    return response.json()


def fetch_weekly_downloads(package_name: str):
    response = requests.get(f"{NPM_DOWNLOADS_API}/{package_name}", timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    return response.json().get("downloads")


def check_theme(theme: dict) -> dict:
    """
    Compare one snapshot record with the live registry.
    Returns dict with validation results
    """
    name = theme.get("packageName")
    if not name:
        return {
            'success': False,
            'error': 'missing packageName',
            'status': 'ERROR'
        }

    try:
        details = fetch_theme_details(name)
        latest = details.get("dist-tags", {}).get("latest")
        downloads = fetch_weekly_downloads(name)
    except (requests.RequestException, ValueError) as e:
        return {
            'success': False,
            'error': str(e),
            'status': 'ERROR'
        }

    match = latest == theme.get("version")
    return {
        'success': True,
        'match': match,
        'expected': theme.get("version"),
        'actual': latest,
        'downloads': theme.get("downloads"),
        'live_downloads': downloads,
        'status': 'OK' if match else 'OUTDATED'
    }


def validate_snapshot(path: Path) -> dict:
    """Validate a snapshot file; returns summary counters."""
    results = {'total': 0, 'problems': [], 'validated': 0, 'outdated': 0, 'errors': 0}

    if not path.exists():
        print(f"❌ File not found: {path}")
        results['problems'].append(f"missing snapshot {path}")
        return results

    with open(path, 'r', encoding='utf-8') as f:
        themes = json.load(f)

    results['total'] = len(themes)

    print(f"\n{'='*70}")
    print(f"Validating {path} - {len(themes)} themes")
    print(f"{'='*70}\n")

    results['problems'] = check_structure(themes)
    for problem in results['problems']:
        print(f"❌ {problem}")
    if not results['problems']:
        print("✅ Structure OK\n")

    sample = themes[:LIVE_CHECK_LIMIT]
    for idx, theme in enumerate(sample, 1):
        name = theme.get("packageName", "?")
        print(f"[{idx}/{len(sample)}] Checking {name}... ", end='', flush=True)

        validation = check_theme(theme)

        if validation['status'] == 'OK':
            print(f"✅ OK (v{validation['actual']}, {validation['live_downloads']} downloads/week)")
            results['validated'] += 1
        elif validation['status'] == 'OUTDATED':
            print("⚠️  OUTDATED")
            print(f"    Snapshot: {validation['expected']}")
            print(f"    Registry: {validation['actual']}")
            results['outdated'] += 1
        else:
            print(f"❌ ERROR: {validation.get('error', 'Unknown')}")
            results['errors'] += 1

    return results


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    path = Path(argv[0]) if argv else Path(OUTPUT_FILE)

    print("\n🔍 THEME SNAPSHOT VALIDATION")
    print(f"{'='*70}")
    print(f"(Checking first {LIVE_CHECK_LIMIT} themes against npm to conserve API quota)")

    results = validate_snapshot(path)

    print(f"\n{'='*70}")
    print(f"TOTAL: {results['total']} themes | {len(results['problems'])} problems | "
          f"{results['validated']} OK | {results['outdated']} outdated | {results['errors']} errors")

    if results['outdated'] > 0:
        print("\nRecommendation: Re-run fetch_themes.py to refresh the snapshot")
    print(f"{'='*70}\n")

    return 1 if results['problems'] else 0


if __name__ == '__main__':
    sys.exit(main())
