#!/usr/bin/env python3
"""
Import wines from a JSON array file into a dataset.

Uses the same storage as the API (GitHub when GITHUB_OWNER/GITHUB_REPO/
GITHUB_TOKEN are set, the local data dir otherwise). New wines are numbered
after the largest numeric id already present.

Usage:
  python scripts/import_wines.py wines.json [--data-source 2] [--dry-run]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from cellar.core.config import get_settings
from cellar.repositories import StoreConfig, WineRecordStore
from cellar.services.wine_service import WineService, WineValidationError


def read_payloads(path: Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise SystemExit(f"{path} must contain a JSON array of wine objects")
    return data


async def run(path: Path, data_source: str, dry_run: bool) -> list[dict]:
    payloads = read_payloads(path)
    if dry_run:
        for payload in payloads:
            WineService._validate_create(payload)
        return []
    store = WineRecordStore(StoreConfig.from_settings(get_settings()))
    return await WineService(store).import_wines(data_source, payloads)


def main() -> None:
    ap = argparse.ArgumentParser(description="Import wines into the cellar")
    ap.add_argument("file", type=Path, help="JSON file with an array of wines")
    ap.add_argument("--data-source", default="1", help='Dataset id ("1" or "2")')
    ap.add_argument("--dry-run", action="store_true", help="Only validate the file")
    args = ap.parse_args()

    try:
        added = asyncio.run(run(args.file, args.data_source, args.dry_run))
    except WineValidationError as exc:
        for err in exc.errors:
            sys.stderr.write(f"  {err['field']}: {err['message']}\n")
        raise SystemExit("Invalid wine payload")
    if args.dry_run:
        print("OK: file is valid")
        return
    print(f"OK: {len(added)} wines imported into dataset {args.data_source}")
    for wine in added:
        print(f"  {wine['id']}: {wine['bottle']} {wine['vintage']}")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover - CLI usage
        sys.stderr.write(f"Error: {exc}\n")
        raise SystemExit(1)
