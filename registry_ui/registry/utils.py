"""Small helpers shared by the registry client, the cache and the purge task."""

import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

SIZE_UNITS = ["B", "KB", "MB", "GB"]

_LINK_NEXT_RE = re.compile(r'<\s*([^>]+?)\s*>\s*;\s*rel\s*=\s*"?next"?')
_FRACTION_RE = re.compile(r"\.(\d+)")


def pretty_size(size: float) -> str:
    """Format bytes in more readable units.

    Decimals grow with the unit: 0 B, 0 KB, 0.0 MB, 0.00 GB.
    """
    size = float(size)
    i = 0
    while size > 1024 and i < len(SIZE_UNITS) - 1:
        size = size / 1024
        i += 1
    decimals = max(i - 1, 0)
    return f"{size:.{decimals}f} {SIZE_UNITS[i]}"


def calculate_digest(content: bytes) -> str:
    """Calculate SHA256 digest for content"""
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def parse_link_next(header: Optional[str]) -> Optional[str]:
    """Extract the target of a ``<url>; rel="next"`` Link header."""
    if not header:
        return None
    match = _LINK_NEXT_RE.search(header)
    return match.group(1) if match else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as found in image config blobs.

    Returns None for empty, unparseable and zero (0001-01-01) values.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # Go marshals nanoseconds, datetime only takes microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed


def split_repository(path: str) -> List[str]:
    """Split a catalog entry into [namespace, repository]."""
    if "/" in path:
        namespace, name = path.split("/", 1)
        return [namespace, name]
    return ["library", path]


def group_by_namespace(paths: Iterable[str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for path in paths:
        namespace, name = split_repository(path)
        grouped.setdefault(namespace, []).append(name)
    return grouped


def unique_sorted(items: Iterable[str]) -> List[str]:
    return sorted(set(items))


def unique_ordered(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result
