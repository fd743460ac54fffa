"""Parsing of the list of tables to export.

Two formats are accepted:

- JSON: a list of ``{"id", "name", "permissions"}`` objects (or an object
  with a ``tables`` key holding that list).
- Plain text: one table per line as ``<table id>[,<name>]``. Empty lines
  and lines starting with ``#`` are skipped.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from ..core.models import TableDescriptor

TABLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{10,}$")


def extract_table_id(value: str) -> str:
    """Extract a Fusion Tables id from a raw id or a table URL.

    Examples:
        >>> extract_table_id("https://fusiontables.google.com/DataSource?docid=1abcDEF_ghijk")
        '1abcDEF_ghijk'
        >>> extract_table_id("1abcDEF_ghijk")
        '1abcDEF_ghijk'

    Raises:
        ValueError: If no table id can be found.
    """
    value = value.strip()
    if value.startswith(("http://", "https://")):
        query = parse_qs(urlparse(value).query)
        for key in ("docid", "docId"):
            if query.get(key):
                return query[key][0]
        raise ValueError(f"No table id in URL: {value}")

    if not TABLE_ID_PATTERN.match(value):
        raise ValueError(f"Invalid table id: {value!r}")
    return value


def parse_tables_file(filepath: Path) -> list[TableDescriptor]:
    """Parse a file listing the tables to export, keeping their order.

    Args:
        filepath: Path to a JSON or plain-text tables file.

    Returns:
        Table descriptors in file order. Duplicate ids are kept once.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If an entry cannot be parsed.
    """
    if not filepath.exists():
        raise FileNotFoundError(f"Tables file not found: {filepath}")

    content = filepath.read_text(encoding="utf-8")
    if content.lstrip().startswith(("[", "{")):
        tables = _parse_json(content)
    else:
        tables = _parse_lines(content)

    seen: set[str] = set()
    unique: list[TableDescriptor] = []
    for table in tables:
        if table.id in seen:
            continue
        seen.add(table.id)
        unique.append(table)
    return unique


def _parse_json(content: str) -> list[TableDescriptor]:
    data = json.loads(content)
    if isinstance(data, dict):
        data = data.get("tables", [])
    if not isinstance(data, list):
        raise ValueError("Expected a list of tables")
    return [TableDescriptor.from_dict(entry) for entry in data]


def _parse_lines(content: str) -> list[TableDescriptor]:
    tables: list[TableDescriptor] = []
    for line in content.splitlines():
        line = line.strip()

        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        raw_id, _, name = line.partition(",")
        table_id = extract_table_id(raw_id)
        tables.append(TableDescriptor(id=table_id, name=name.strip() or table_id))
    return tables
