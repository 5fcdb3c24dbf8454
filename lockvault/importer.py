"""
CSV import of credential exports from other password managers.

Supported sources are detected from the header row: Chrome (default),
Firefox, LastPass, Bitwarden, 1Password and KeePass. Rows without a
password, or without any usable site label, are skipped and counted.
"""
import io
import re
import csv
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from .models import Category, VaultEntry

logger = logging.getLogger("lockvault.importer")

COLUMN_MAPS: dict[str, dict[str, str]] = {
    "chrome": {"name": "site_name", "url": "url", "username": "username", "password": "password"},
    "firefox": {"url": "url", "username": "username", "password": "password"},
    "lastpass": {
        "name": "site_name", "url": "url", "username": "username", "password": "password",
        "grouping": "category", "extra": "notes", "fav": "favorite",
    },
    "bitwarden": {
        "login_name": "site_name", "name": "site_name", "login_uri": "url",
        "login_username": "username", "login_password": "password", "notes": "notes",
    },
    "onepassword": {
        "title": "site_name", "url": "url", "username": "username",
        "password": "password", "notes": "notes",
    },
    "keepass": {
        "title": "site_name", "url": "url", "username": "username",
        "password": "password", "notes": "notes", "group": "category",
    },
}

_CATEGORY_HINTS = [
    (("work", "business"), Category.WORK),
    (("finance", "bank", "pay"), Category.FINANCE),
    (("social",), Category.SOCIAL),
    (("personal",), Category.PERSONAL),
]


@dataclass
class ImportResult:
    entries: list[VaultEntry] = field(default_factory=list)
    source: str = "unknown"
    skipped: int = 0


def normalize_header(header: str) -> str:
    return re.sub(r"\s+", "_", header.strip().lower())


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse CSV text into rows keyed by normalized header names."""
    reader = csv.reader(io.StringIO(text))
    lines = [row for row in reader if any(cell.strip() for cell in row)]
    if len(lines) < 2:
        return []
    headers = [normalize_header(h) for h in lines[0]]
    rows = []
    for values in lines[1:]:
        rows.append({
            header: (values[idx].strip() if idx < len(values) else "")
            for idx, header in enumerate(headers)
        })
    return rows


def detect_source(headers: list[str]) -> str:
    normalized = {normalize_header(h) for h in headers}
    if "login_uri" in normalized or "login_password" in normalized:
        return "bitwarden"
    if {"grouping", "extra"} <= normalized:
        return "lastpass"
    if "httprealm" in normalized or "formactionorigin" in normalized:
        return "firefox"
    if {"group", "title", "totp"} <= normalized:
        return "keepass"
    if {"title", "url", "username"} <= normalized:
        return "onepassword"
    return "chrome"


def guess_category(row: dict[str, str], source: str) -> Category:
    group = row.get("grouping" if source == "lastpass" else "group", "")
    group = group.lower()
    if group:
        for hints, category in _CATEGORY_HINTS:
            if any(hint in group for hint in hints):
                return category
    return Category.OTHER


def _site_from_url(url: str) -> str:
    host = urlparse(url).hostname if "://" in url else None
    if not host:
        return url
    return re.sub(r"^www\.", "", host)


def _row_to_entry(row: dict[str, str], source: str) -> Optional[VaultEntry]:
    values = {"site_name": "", "url": "", "username": "", "password": "", "notes": ""}
    favorite = False
    for column, target in COLUMN_MAPS[source].items():
        value = row.get(column, "")
        if not value:
            continue
        if target in ("site_name", "url"):
            if not values[target]:
                values[target] = value
        elif target == "favorite":
            favorite = value == "1" or value.lower() == "true"
        elif target in values:
            values[target] = value

    if not values["password"]:
        return None
    if not values["site_name"] and values["url"]:
        values["site_name"] = _site_from_url(values["url"])
    if not values["site_name"]:
        return None

    return VaultEntry(
        site_name=values["site_name"],
        url=values["url"],
        username=values["username"],
        password=values["password"],
        category=guess_category(row, source),
        favorite=favorite,
        notes=values["notes"] or None,
    )


def import_from_csv(text: str) -> ImportResult:
    """Normalize a third-party CSV export into vault entries."""
    rows = parse_csv(text)
    if not rows:
        return ImportResult()

    source = detect_source(list(rows[0].keys()))
    result = ImportResult(source=source)
    for row in rows:
        entry = _row_to_entry(row, source)
        if entry is None:
            result.skipped += 1
            continue
        result.entries.append(entry)

    logger.info(
        "CSV import: source=%s entries=%d skipped=%d",
        source, len(result.entries), result.skipped,
    )
    return result
