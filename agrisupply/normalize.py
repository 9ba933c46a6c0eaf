"""Normalization of raw delimited-text rows into location points."""
from __future__ import annotations

import csv
import io
import logging
import math
import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .catalog import CANONICAL_PROVINCES, COUNTRY_NAME_MAPPING, FIELD_ALIASES, PROVINCE_ALIASES
from .model import LocationPoint

logger = logging.getLogger(__name__)

SourceRow = Dict[str, str]

DELIMITER_CANDIDATES = (",", ";", "\t", "|")

# Latin "A" typed in front of Greek letters (seen as "Aττική" in the WTP export)
_MIXED_ALPHA = re.compile(r"^A(?=[\u0370-\u03FF\u1F00-\u1FFF])")
_NON_WORD = re.compile(r"[^\w]")
_WHITESPACE = re.compile(r"\s+")
_FOLD_SEPARATORS = re.compile(r"[\W_]+")


def fold(value: Any) -> str:
    """Comparison key that ignores case, accents and punctuation."""

    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _FOLD_SEPARATORS.sub(" ", stripped.casefold()).strip()


_COUNTRY_LOOKUP: Dict[str, str] = {fold(key): name for key, name in COUNTRY_NAME_MAPPING.items()}

_PROVINCE_LOOKUP: Dict[str, str] = {
    fold(name): name for names in CANONICAL_PROVINCES.values() for name in names
}
_PROVINCE_LOOKUP.update({fold(alias): name for alias, name in PROVINCE_ALIASES.items()})


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def normalize_header(name: Optional[str]) -> str:
    if name is None:
        return ""
    lowered = _WHITESPACE.sub("_", name.strip().lower())
    return _NON_WORD.sub("", lowered)


def to_number(value: Any) -> Optional[float]:
    """Parse a float accepting ``.`` or ``,`` as decimal separator; ``None`` when invalid."""

    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text.replace(",", ".", 1))
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def pick(row: SourceRow, keys: Iterable[str]) -> Optional[str]:
    """Return the first non-blank value among ``keys``."""

    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return value
    return None


def normalize_country(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    return COUNTRY_NAME_MAPPING.get(text.upper()) or _COUNTRY_LOOKUP.get(fold(text)) or text


def normalize_province(value: Any) -> str:
    """Map a province label to its canonical NUTS-2 name.

    Handles "EL30 - Αττική" style prefixes, Greek script, accents and
    punctuation. Unknown names are kept, title-cased when they arrive in a
    single case so that "WEST X" and "west x" index as one entry.
    """

    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""

    _, sep, tail = text.partition(" - ")
    if sep and tail.strip():
        text = tail.strip()

    text = _MIXED_ALPHA.sub("\u0391", text)

    canonical = _PROVINCE_LOOKUP.get(fold(text))
    if canonical:
        return canonical
    if text.islower() or text.isupper():
        return text.title()
    return text


def split_region(value: Any) -> Tuple[str, str]:
    """Split a combined "Province, Country" label into (province, country)."""

    text = str(value or "").strip()
    if "," not in text:
        return text, ""
    province, _, country = text.rpartition(",")
    return province.strip(), country.strip()


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------

def _in_range(lat: Optional[float], lon: Optional[float]) -> bool:
    return lat is not None and lon is not None and abs(lat) <= 90 and abs(lon) <= 180


def parse_combined_coordinates(value: Any) -> Tuple[Optional[float], Optional[float]]:
    """Parse "lat, lon" (or swapped "lon, lat") into (lat, lon)."""

    text = str(value or "").strip()
    separator = ";" if ";" in text else ","
    parts = [part.strip() for part in text.split(separator) if part.strip()]
    if len(parts) < 2:
        parts = text.split()
    if len(parts) < 2:
        return None, None

    first, second = to_number(parts[0]), to_number(parts[1])
    if first is None or second is None:
        return None, None
    if _in_range(first, second):
        return first, second
    if _in_range(second, first):
        return second, first
    return None, None


def parse_lat_lon(row: SourceRow) -> Tuple[Optional[float], Optional[float]]:
    """Resolve coordinates from explicit columns, falling back to a combined column.

    ``(0, 0)`` is the unset sentinel and yields ``(None, None)``.
    """

    lat = to_number(pick(row, FIELD_ALIASES["latitude"]))
    lon = to_number(pick(row, FIELD_ALIASES["longitude"]))

    if not _in_range(lat, lon):
        lat, lon = None, None
        combined = pick(row, FIELD_ALIASES["location"])
        if combined is not None:
            lat, lon = parse_combined_coordinates(combined)

    if lat is None or lon is None:
        return None, None
    if lat == 0 and lon == 0:
        return None, None
    return lat, lon


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

def _sniff_delimiter(header_line: str) -> str:
    counts = {candidate: header_line.count(candidate) for candidate in DELIMITER_CANDIDATES}
    best = max(DELIMITER_CANDIDATES, key=lambda candidate: counts[candidate])
    return best if counts[best] else ","


def parse_rows(text: str) -> List[SourceRow]:
    """Parse delimited text with a header row into rows keyed by normalized header."""

    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        return []

    delimiter = _sniff_delimiter(text.splitlines()[0])
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    try:
        header = next(reader)
    except StopIteration:
        return []
    keys = [normalize_header(column) for column in header]

    rows: List[SourceRow] = []
    for record in reader:
        if not any(cell.strip() for cell in record):
            continue
        row: SourceRow = {}
        for key, cell in zip(keys, record):
            if not key or row.get(key):
                continue
            row[key] = cell.strip()
        rows.append(row)
    return rows


def row_to_point(row: SourceRow, dataset_key: str) -> Optional[LocationPoint]:
    if not row or not any(str(value).strip() for value in row.values()):
        return None

    country_raw = pick(row, FIELD_ALIASES["country"]) or pick(row, FIELD_ALIASES["country_code"])
    province_raw = pick(row, FIELD_ALIASES["province"])
    if country_raw is None or province_raw is None:
        combined = pick(row, FIELD_ALIASES["region_combined"])
        if combined is not None:
            province_part, country_part = split_region(combined)
            country_raw = country_raw or country_part
            province_raw = province_raw or province_part

    lat, lon = parse_lat_lon(row)

    quantity = to_number(pick(row, FIELD_ALIASES["quantity"]))
    if quantity is None or quantity < 0:
        quantity = 0.0

    name = pick(row, FIELD_ALIASES["name"])

    return LocationPoint(
        latitude=lat,
        longitude=lon,
        country=normalize_country(country_raw),
        province=normalize_province(province_raw),
        dataset_key=dataset_key,
        quantity=quantity,
        name=name.strip() if name else None,
        capacity_pe=to_number(pick(row, FIELD_ALIASES["capacity_pe"])),
    )


def parse_points(text: str, dataset_key: str) -> List[LocationPoint]:
    rows = parse_rows(text)
    points: List[LocationPoint] = []
    for row in rows:
        point = row_to_point(row, dataset_key)
        if point is not None:
            points.append(point)
    logger.debug("Parsed %d point(s) from %d row(s) of %s", len(points), len(rows), dataset_key)
    return points
