"""Turn raw affiliate feed bytes into untyped field maps.

Both parsers are generators: nothing is read until the caller iterates, and
calling :func:`parse` again on the same bytes starts from scratch. Row-level
problems (ragged CSV rows, products without an id or a name) are skipped;
only a document that cannot be read at all raises :class:`FeedParseError`.
"""
from __future__ import annotations

import csv
import io
import logging
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional, Union

from holiday_catalog.errors import FeedParseError

from .models import FieldMap

logger = logging.getLogger(__name__)

IDENTITY_ID_KEYS: tuple[str, ...] = ("product_id", "pid", "id", "external_id")
IDENTITY_NAME_KEYS: tuple[str, ...] = ("product_name", "name")

# Awin product-feed element names mapped onto the CSV column names.
XML_FIELD_NAMES: dict[str, str] = {
    "pid": "product_id",
    "name": "product_name",
    "desc": "description",
    "purl": "deep_link",
    "imgurl": "image_url",
    "price": "price",
    "currency": "currency",
    "category": "merchant_category",
    "brand": "brand_name",
}


class FeedFormat(str, Enum):
    CSV = "csv"
    XML = "xml"


def _decode(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        return data.lstrip("\ufeff")
    return data.decode("utf-8-sig", errors="replace")


def _first_present(row: Mapping[str, str], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def has_identity(row: Mapping[str, str]) -> bool:
    """Return True when the row carries both an id and a name."""
    return (
        _first_present(row, IDENTITY_ID_KEYS) is not None
        and _first_present(row, IDENTITY_NAME_KEYS) is not None
    )


def parse_csv(data: Union[bytes, str], *, delimiter: str = ",") -> Iterator[FieldMap]:
    text = _decode(data)
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    headers: Optional[list[str]] = None
    kept = 0
    skipped = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            if headers is None:
                raise FeedParseError(f"Malformed CSV feed header: {exc}") from exc
            skipped += 1
            logger.debug("Skipping unreadable CSV line %s: %s", reader.line_num, exc)
            continue
        if not row or all(not cell.strip() for cell in row):
            continue
        if headers is None:
            headers = [header.strip() for header in row]
            continue
        if len(row) != len(headers):
            skipped += 1
            logger.debug(
                "Skipping CSV line %s: %s fields, header has %s",
                reader.line_num,
                len(row),
                len(headers),
            )
            continue
        record = dict(zip(headers, row))
        if not has_identity(record):
            skipped += 1
            continue
        kept += 1
        yield record
    logger.info("Parsed CSV feed (%s rows kept, %s skipped)", kept, skipped)


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1]
    return tag


def _product_to_record(product: ET.Element) -> FieldMap:
    record: FieldMap = {}
    for child in product:
        tag = _local_name(child.tag)
        text = "".join(child.itertext()).strip()
        if tag == "custom":
            key = (child.get("name") or "").strip()
            if key:
                record[key] = text
            continue
        record[XML_FIELD_NAMES.get(tag, tag)] = text
    return record


def parse_xml(data: Union[bytes, str]) -> Iterator[FieldMap]:
    payload = data.encode("utf-8") if isinstance(data, str) else data
    kept = 0
    skipped = 0
    try:
        for _event, element in ET.iterparse(io.BytesIO(payload), events=("end",)):
            if _local_name(element.tag) != "product":
                continue
            record = _product_to_record(element)
            element.clear()
            if not has_identity(record):
                skipped += 1
                continue
            kept += 1
            yield record
    except ET.ParseError as exc:
        raise FeedParseError(f"Malformed XML feed: {exc}") from exc
    logger.info("Parsed XML feed (%s products kept, %s skipped)", kept, skipped)


def parse(data: Union[bytes, str], feed_format: Union[FeedFormat, str]) -> Iterator[FieldMap]:
    """Parse ``data`` lazily according to ``feed_format``."""
    try:
        fmt = FeedFormat(str(getattr(feed_format, "value", feed_format)).lower())
    except ValueError as exc:
        raise FeedParseError(f"Unsupported feed format '{feed_format}'") from exc
    if fmt is FeedFormat.XML:
        return parse_xml(data)
    return parse_csv(data)


__all__ = ["FeedFormat", "has_identity", "parse", "parse_csv", "parse_xml"]
