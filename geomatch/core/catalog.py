"""
Reference catalog loading and writing.

A catalog is either a JSON document (a list of records, or
``{"dimension": D, "records": [...]}``) or JSON lines, one record per line.
Each record is ``{id, label, lat, lon, vector}``.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import ValidationError

from ..api.schemas import CatalogRecord
from ..util.logging import logger
from ..vector.types import ReferenceVector
from .errors import CatalogError


@dataclass
class CatalogLoadResult:
    """Outcome of loading a catalog: the accepted references plus rejection bookkeeping."""

    references: List[ReferenceVector]
    dimension: int
    accepted: int
    rejected: int
    rejections: List[Tuple[str, str]] = field(default_factory=list)
    """(record locator, reason) for every rejected record"""


def _read_raw_records(path: Path) -> Tuple[Optional[int], List[Tuple[str, Any]]]:
    """Return (declared dimension, [(locator, raw record)]) from a catalog file."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CatalogError(f"cannot read catalog {path}: {e}") from e

    if path.suffix == ".jsonl":
        records = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                records.append((f"line {line_no}", json.loads(line)))
            except (json.JSONDecodeError, RecursionError) as e:
                records.append((f"line {line_no}", e))
        return None, records

    try:
        document = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        raise CatalogError(f"catalog {path} is not valid JSON: {e}") from e

    declared = None
    if isinstance(document, dict):
        declared = document.get("dimension")
        document = document.get("records")
        if declared is not None and (not isinstance(declared, int) or declared < 1):
            raise CatalogError(f"catalog {path} declares an invalid dimension: {declared!r}")
    if not isinstance(document, list):
        raise CatalogError(f"catalog {path} must hold a list of records")

    return declared, [(f"record {i}", raw) for i, raw in enumerate(document)]


def parse_records(raw_records: Iterable[Tuple[str, Any]], dimension: Optional[int] = None):
    """Validate raw records one by one.

    Returns:
        (references, dimension, rejections). ``dimension`` is the given one or
        the length of the first valid vector.
    """
    references = []
    rejections = []
    seen_ids = set()

    for locator, raw in raw_records:
        if isinstance(raw, Exception):
            rejections.append((locator, f"malformed JSON: {raw}"))
            continue
        if not isinstance(raw, dict):
            rejections.append((locator, "record is not an object"))
            continue

        try:
            record = CatalogRecord.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(part) for part in first.get("loc", ())) or "record"
            rejections.append((locator, f"{field_name}: {first.get('msg')}"))
            continue

        if dimension is None:
            dimension = len(record.vector)
        if len(record.vector) != dimension:
            rejections.append((locator, f"vector dimension {len(record.vector)} != {dimension}"))
            continue
        if record.id in seen_ids:
            rejections.append((locator, f"duplicate id {record.id!r}"))
            continue

        seen_ids.add(record.id)
        vector = np.asarray(record.vector, dtype=np.float64)
        vector.setflags(write=False)
        references.append(ReferenceVector(
            id=record.id,
            label=record.label,
            lat=record.lat,
            lon=record.lon,
            vector=vector,
        ))

    return references, dimension, rejections


def load_catalog(path, dimension: Optional[int] = None) -> CatalogLoadResult:
    """Load and validate a reference catalog.

    Args:
        path: ``.json`` or ``.jsonl`` catalog file
        dimension: Required vector dimension; inferred when omitted

    Raises:
        CatalogError: unreadable file, malformed document, or no valid records
    """
    path = Path(path)
    declared, raw_records = _read_raw_records(path)

    if dimension is not None and declared is not None and declared != dimension:
        logger.log_catalog_load(path, 0, len(raw_records), "rejected")
        raise CatalogError(f"catalog {path} dimension {declared} does not match expected {dimension}")

    references, dimension, rejections = parse_records(raw_records, dimension or declared)
    if not references:
        logger.log_catalog_load(path, 0, len(rejections), "rejected")
        raise CatalogError(f"catalog {path} holds no valid records")

    status = "partial" if rejections else "success"
    logger.log_catalog_load(path, len(references), len(rejections), status)
    for locator, reason in rejections[:10]:
        logger.debug(f"catalog record rejected: {locator}: {reason}")

    return CatalogLoadResult(
        references=references,
        dimension=dimension,
        accepted=len(references),
        rejected=len(rejections),
        rejections=rejections,
    )


def _record_dict(ref: ReferenceVector) -> dict:
    return {
        "id": ref.id,
        "label": ref.label,
        "lat": ref.lat,
        "lon": ref.lon,
        "vector": [float(x) for x in ref.vector],
    }


def write_catalog(path, references: Sequence[ReferenceVector], dimension: Optional[int] = None) -> Path:
    """Write references atomically as ``.jsonl`` (by suffix) or a ``.json`` document with a dimension header."""
    path = Path(path)
    if dimension is None:
        if not references:
            raise CatalogError("dimension is required to write an empty catalog")
        dimension = references[0].dimension
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            if path.suffix == ".jsonl":
                for ref in references:
                    handle.write(json.dumps(_record_dict(ref)) + "\n")
            else:
                json.dump({
                    "dimension": dimension,
                    "records": [_record_dict(ref) for ref in references],
                }, handle)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.log_operation("catalog.write", "success", {"path": str(path), "records": len(references)})
    return path
