"""
Binary persistence for HNSW snapshots.

Layout (little-endian)::

    header  magic(8s) version(u16) dimension(u32) node_count(u32) m(u32)
            ef_construction(u32) max_level(i32) entry_point(i32)
    nodes   id_len(u16) id(utf-8) level(u16)
            then for each level 0..level: count(u16) neighbors(count * u32)
    footer  crc32(u32) of every preceding byte

Vector values are not embedded; they come from the companion reference
catalog, which the loader checks node by node against the stored ids.
"""

import os
import struct
import tempfile
import zlib
from pathlib import Path
from typing import Optional, Sequence

from ..core.errors import SnapshotError
from ..util.logging import logger
from .hnsw import HNSWIndex, HNSWParams
from .index import stack_references
from .types import ReferenceVector

MAGIC = b"GMHNSW01"
FORMAT_VERSION = 1

_HEADER = struct.Struct("<8sHIIIIii")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")


def encode_snapshot(index: HNSWIndex) -> bytes:
    """Serialize an index graph to the snapshot byte layout."""
    params = index.params
    entry_point = -1 if index.entry_point is None else index.entry_point
    parts = [_HEADER.pack(MAGIC, FORMAT_VERSION, index.dimension, len(index),
                          params.m, params.ef_construction, index.max_level, entry_point)]

    for position, ref in enumerate(index.references):
        raw_id = ref.id.encode("utf-8")
        if len(raw_id) > 0xFFFF:
            raise SnapshotError(f"reference id too long to persist: {ref.id[:40]}...")
        level = index.levels[position]
        parts.append(_U16.pack(len(raw_id)))
        parts.append(raw_id)
        parts.append(_U16.pack(level))
        for level_links in index.node_links(position):
            parts.append(_U16.pack(len(level_links)))
            parts.append(struct.pack(f"<{len(level_links)}I", *level_links))

    body = b"".join(parts)
    return body + _U32.pack(zlib.crc32(body) & 0xFFFFFFFF)


def save_snapshot(index: HNSWIndex, path) -> Path:
    """Write a snapshot atomically: temp file in the target directory, fsync, rename.

    A concurrently starting process sees either the previous snapshot or the
    complete new one, never a partial file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = encode_snapshot(index)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        logger.log_snapshot_operation("save", path, "failed", {"error": str(e)})
        raise

    logger.log_snapshot_operation("save", path, "success", {
        "node_count": len(index),
        "bytes": len(payload),
    })
    return path


class _Reader:
    """Bounds-checked cursor over snapshot bytes."""

    def __init__(self, data: bytes, limit: int):
        self.data = data
        self.limit = limit
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > self.limit:
            raise SnapshotError("snapshot truncated")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def unpack(self, fmt: struct.Struct):
        return fmt.unpack(self.take(fmt.size))


def decode_snapshot(data: bytes, references: Sequence[ReferenceVector], dimension: int,
                    params: Optional[HNSWParams] = None) -> HNSWIndex:
    """Rebuild an index from snapshot bytes and the caller's reference vectors.

    Raises:
        SnapshotError: any header, count, id, range or checksum mismatch.
    """
    if len(data) < _HEADER.size + _U32.size:
        raise SnapshotError("snapshot truncated")

    (stored_crc,) = _U32.unpack(data[-_U32.size:])
    if zlib.crc32(data[:-_U32.size]) & 0xFFFFFFFF != stored_crc:
        raise SnapshotError("snapshot checksum mismatch")

    reader = _Reader(data, len(data) - _U32.size)
    magic, version, stored_dim, node_count, m, ef_construction, max_level, entry_point = \
        reader.unpack(_HEADER)

    if magic != MAGIC:
        raise SnapshotError("snapshot magic mismatch")
    if version != FORMAT_VERSION:
        raise SnapshotError(f"unsupported snapshot version {version}")
    if m < 2 or ef_construction < 1:
        raise SnapshotError(f"snapshot declares invalid build parameters (m={m}, ef_construction={ef_construction})")
    if stored_dim != dimension:
        raise SnapshotError(f"snapshot dimension {stored_dim} does not match references ({dimension})")
    if node_count != len(references):
        raise SnapshotError(f"snapshot holds {node_count} nodes but {len(references)} references were supplied")
    if node_count == 0:
        if entry_point != -1:
            raise SnapshotError("empty snapshot declares an entry point")
    elif not 0 <= entry_point < node_count:
        raise SnapshotError(f"entry point {entry_point} out of range")

    levels = []
    links = []
    for position in range(node_count):
        (id_len,) = reader.unpack(_U16)
        try:
            node_id = reader.take(id_len).decode("utf-8")
        except UnicodeDecodeError as e:
            raise SnapshotError(f"node {position} id is not valid utf-8") from e
        if node_id != references[position].id:
            raise SnapshotError(
                f"node {position} id {node_id!r} does not match reference {references[position].id!r}"
            )

        (level,) = reader.unpack(_U16)
        if level > max_level:
            raise SnapshotError(f"node {position} level {level} exceeds max level {max_level}")

        node_links = []
        for _ in range(level + 1):
            (count,) = reader.unpack(_U16)
            neighbors = struct.unpack(f"<{count}I", reader.take(4 * count))
            if any(n >= node_count for n in neighbors):
                raise SnapshotError(f"node {position} has a neighbor index out of range")
            node_links.append(neighbors)
        levels.append(level)
        links.append(node_links)

    if reader.offset != reader.limit:
        raise SnapshotError("snapshot has trailing bytes")
    if node_count and levels[entry_point] != max_level:
        raise SnapshotError("entry point level does not match max level")

    base = params or HNSWParams()
    restored_params = HNSWParams(m=m, ef_construction=ef_construction,
                                 ef_search=base.ef_search, seed=base.seed)
    matrix = stack_references(references, dimension)
    return HNSWIndex(references, matrix, levels, links,
                     None if node_count == 0 else entry_point, max_level,
                     restored_params, dimension)


def load_snapshot(path, references: Sequence[ReferenceVector], dimension: Optional[int] = None,
                  params: Optional[HNSWParams] = None) -> HNSWIndex:
    """Load a snapshot and bind it to ``references``.

    Any mismatch is a hard failure; the caller must rebuild.

    Raises:
        SnapshotError: file missing, unreadable, corrupt or stale.
    """
    path = Path(path)
    if dimension is None:
        if not references:
            raise SnapshotError("dimension is required when loading against an empty reference list")
        dimension = references[0].dimension

    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as e:
        logger.log_snapshot_operation("load", path, "failed", {"error": str(e)})
        raise SnapshotError(f"cannot read snapshot {path}: {e}") from e

    try:
        index = decode_snapshot(data, references, dimension, params)
    except SnapshotError as e:
        logger.log_snapshot_operation("load", path, "rejected", {"error": str(e)})
        raise

    logger.log_snapshot_operation("load", path, "success", {"node_count": len(index)})
    return index
