"""
Decoding of ``ListObjectsV2`` XML responses into file records.

S3-compatible servers do not agree on whether the ListBucketResult document
carries the ``http://s3.amazonaws.com/doc/2006-03-01/`` namespace, so lookups
below match on local tag names only.
"""
from __future__ import annotations

import mimetypes
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel, computed_field

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION = re.compile(r"\.(\d+)")

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]
UNIT_FACTOR = 1024


class ListingParseError(ValueError):
    """Raised when a listing response is not well-formed XML."""


class FileRecord(BaseModel):
    name: str
    url: str
    last_modified: datetime
    size: int = 0
    etag: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @computed_field
    @property
    def size_label(self) -> str:
        return format_file_size(self.size)


@dataclass
class ListingPage:
    records: List[FileRecord] = field(default_factory=list)
    is_truncated: bool = False
    next_token: Optional[str] = None


def format_file_size(size: int) -> str:
    """
    Render a byte count the way the listing shows it, e.g. ``1.5 KB``.

    Values are scaled by powers of 1024 and rounded to two decimals with
    trailing zeros dropped; zero is rendered as ``0 Bytes``.
    """
    if size < 0:
        raise ValueError("size must not be negative")
    if size == 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= UNIT_FACTOR and unit < len(SIZE_UNITS) - 1:
        value /= UNIT_FACTOR
        unit += 1
    number = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{number} {SIZE_UNITS[unit]}"


def size_limit_message(max_bytes: int) -> str:
    return f"File size is too large. Max size is {format_file_size(max_bytes).replace(' ', '')}."


def size_to_bytes(label: str) -> int:
    """Convert a ``format_file_size`` label back to an approximate byte count."""
    try:
        number, unit = label.strip().split(" ")
        value = float(number)
    except ValueError:
        raise ValueError(f"Unrecognised size label: {label!r}")
    if unit not in SIZE_UNITS:
        raise ValueError(f"Unknown size unit: {unit!r}")
    return int(round(value * UNIT_FACTOR ** SIZE_UNITS.index(unit)))


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip(), count=1)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_image(key: str) -> bool:
    content_type, _ = mimetypes.guess_type(key)
    return bool(content_type and content_type.startswith("image/"))


def sort_by_recency(records: Iterable[FileRecord]) -> List[FileRecord]:
    """Newest first; records with equal timestamps keep their relative order."""
    return sorted(records, key=lambda record: record.last_modified, reverse=True)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name:
            return child.text
    return None


def _parse_size(value: Optional[str]) -> int:
    try:
        return max(0, int(value or 0))
    except ValueError:
        return 0


def parse_listing(xml_text, object_url: Callable[[str], str]) -> ListingPage:
    """
    Parse one ListBucketResult page.

    Args:
        xml_text: Response body (``str`` or ``bytes``).
        object_url: Builds the download URL for a key.

    Returns:
        ListingPage with records sorted newest first plus paging markers.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ListingParseError(f"Invalid listing XML: {exc}")

    records = []
    for element in root.iter():
        if _local_name(element.tag) != "Contents":
            continue
        key = _child_text(element, "Key") or ""
        url = object_url(key)
        etag = _child_text(element, "ETag")
        records.append(
            FileRecord(
                name=key,
                url=url,
                last_modified=parse_timestamp(_child_text(element, "LastModified")),
                size=_parse_size(_child_text(element, "Size")),
                etag=etag.strip('"') if etag else None,
                thumbnail_url=url if is_image(key) else None,
            )
        )

    is_truncated = (_child_text(root, "IsTruncated") or "").strip().lower() == "true"
    next_token = _child_text(root, "NextContinuationToken")
    return ListingPage(
        records=sort_by_recency(records),
        is_truncated=is_truncated,
        next_token=next_token or None,
    )
