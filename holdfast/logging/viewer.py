"""
Log Viewer Utilities for Holdfast.

Query and format JSONL log entries. Used by the `holdfast logs` command.
"""

import json
import re
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config import get_config

LOG_TYPES = ("lifecycle", "emergency")


def parse_since(since: str) -> datetime:
    """
    Parse a 'since' time string into an aware UTC datetime.

    Supports:
        - ISO format: "2026-01-11T10:00:00+00:00"
        - Relative: "1h", "30m", "2d", "1w"

    Raises:
        ValueError: If the string matches neither form
    """
    try:
        parsed = datetime.fromisoformat(since)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    match = re.match(r"^(\d+)([mhdw])$", since.lower())
    if match:
        value = int(match.group(1))
        delta_map = {
            "m": timedelta(minutes=value),
            "h": timedelta(hours=value),
            "d": timedelta(days=value),
            "w": timedelta(weeks=value),
        }
        return datetime.now(timezone.utc) - delta_map[match.group(2)]

    raise ValueError(f"Invalid time format: {since}. Use ISO format or relative (1h, 30m, 2d)")


def read_jsonl(filepath: Path, since: datetime | None = None) -> Iterator[dict[str, Any]]:
    """
    Read entries from a JSONL file, skipping unparseable lines.

    Args:
        filepath: Path to JSONL file
        since: Only return entries at or after this time
    """
    if not filepath.exists():
        return

    with open(filepath, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue

            if since:
                try:
                    entry_time = datetime.fromisoformat(entry.get("timestamp", ""))
                    if entry_time.tzinfo is None:
                        entry_time = entry_time.replace(tzinfo=timezone.utc)
                    if entry_time < since:
                        continue
                except (ValueError, TypeError):
                    continue

            yield entry


def query_logs(
    log_type: str = "all",
    since: str | None = None,
    session_id: str | None = None,
    owner_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """
    Query log entries with filters, newest first.

    Args:
        log_type: "lifecycle", "emergency", or "all"
        since: Time filter (ISO or relative like "1h")
        session_id: Filter by session ID
        owner_id: Filter by owner
        limit: Max entries to return
    """
    if log_type != "all" and log_type not in LOG_TYPES:
        raise ValueError(f"Unknown log type: {log_type}. Use one of: all, {', '.join(LOG_TYPES)}")

    config = get_config()
    since_dt = parse_since(since) if since else None
    paths = {
        "lifecycle": config.lifecycle_log_path,
        "emergency": config.emergency_log_path,
    }

    entries: list[dict[str, Any]] = []
    for source in LOG_TYPES:
        if log_type not in ("all", source):
            continue
        for entry in read_jsonl(paths[source], since=since_dt):
            if session_id and entry.get("session_id") != session_id:
                continue
            if owner_id and entry.get("owner_id") != owner_id:
                continue
            entry["_source"] = source
            entries.append(entry)

    entries.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
    return entries[:limit]


def format_entry_line(entry: dict[str, Any]) -> str:
    """Format one entry as a single display line."""
    ts = entry.get("timestamp", "")[:19].replace("T", " ")
    session = (entry.get("session_id") or "")[:8]
    owner = entry.get("owner_id", "")

    if entry.get("_source") == "emergency":
        status = "OK" if entry.get("success") else "DENIED"
        return f"{ts} [emergency] {owner} {session} {status} {entry.get('reason', '')}"

    event = entry.get("event_type", "?")
    transition = ""
    if entry.get("from_state") or entry.get("to_state"):
        transition = f" {entry.get('from_state') or '-'}->{entry.get('to_state') or '-'}"
    error = f" error={entry['error']}" if entry.get("error") else ""
    return f"{ts} [{event}] {owner} {session}{transition}{error}"
