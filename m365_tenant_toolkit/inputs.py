"""
Input loading — identity lists from CSV files.

The identity column is taken from --column when given, otherwise the first
header that matches one of ACCEPTED_IDENTITY_COLUMNS (case-insensitive).
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional

from .errors import SetupError

logger = logging.getLogger("m365_tenant_toolkit.inputs")

# Checked in this order
ACCEPTED_IDENTITY_COLUMNS = [
    "Identity",
    "UserPrincipalName",
    "UPN",
    "SamAccountName",
    "Mail",
    "EmailAddress",
    "PrimarySmtpAddress",
    "GroupName",
    "Group",
    "DistinguishedName",
    "ObjectId",
    "Id",
    "DisplayName",
    "Name",
]


def read_rows(path: str | Path) -> tuple[list[str], list[dict]]:
    """Read a CSV file. Returns (headers, rows). Raises SetupError if unreadable."""
    path = Path(path)
    if not path.is_file():
        raise SetupError(f"Input file not found: {path}")
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(fh)
            headers = [h.strip() for h in (reader.fieldnames or [])]
            rows = [
                {(k or "").strip(): (v or "").strip() for k, v in row.items() if k is not None}
                for row in reader
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise SetupError(f"Could not read {path}: {e}") from e
    if not headers:
        raise SetupError(f"Input file {path} has no header row")
    return headers, rows


def detect_identity_column(headers: list[str], column: Optional[str] = None) -> str:
    """Pick the identity column. Raises SetupError when nothing matches."""
    by_lower = {h.lower(): h for h in headers}
    if column:
        match = by_lower.get(column.lower())
        if not match:
            raise SetupError(f"Column '{column}' not found. Available: {', '.join(headers)}")
        return match
    for candidate in ACCEPTED_IDENTITY_COLUMNS:
        if candidate.lower() in by_lower:
            return by_lower[candidate.lower()]
    raise SetupError(
        f"No identity column found. Expected one of: {', '.join(ACCEPTED_IDENTITY_COLUMNS)} "
        f"(got: {', '.join(headers)}). Use --column to choose one."
    )


def read_identities(path: str | Path, column: Optional[str] = None) -> tuple[str, list[str]]:
    """
    Load identities from a CSV file.
    Blank cells are dropped; duplicates are dropped after the first occurrence.
    """
    headers, rows = read_rows(path)
    col = detect_identity_column(headers, column)
    identities: list[str] = []
    seen: set[str] = set()
    for row in rows:
        value = row.get(col, "")
        if not value:
            continue
        key = value.lower()
        if key in seen:
            logger.debug(f"Duplicate identity '{value}' ignored")
            continue
        seen.add(key)
        identities.append(value)
    logger.info(f"Loaded {len(identities)} identities from {path} (column '{col}')")
    return col, identities
