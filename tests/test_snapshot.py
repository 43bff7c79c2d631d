import struct
import zlib
from unittest.mock import patch

import numpy as np
import pytest

from conftest import make_reference
from geomatch.core.errors import SnapshotError
from geomatch.vector.hnsw import HNSWIndex, HNSWParams
from geomatch.vector.snapshot import MAGIC, decode_snapshot, encode_snapshot, load_snapshot, save_snapshot


@pytest.fixture
def built(random_references):
    references = random_references(300, 16, seed=9)
    index = HNSWIndex.build(references, HNSWParams(m=8, ef_construction=64, seed=4))
    return references, index


def test_round_trip_identical_results(tmp_path, built):
    """A reloaded snapshot returns the same top-k with identical similarities."""
    references, index = built
    path = save_snapshot(index, tmp_path / "index.hnsw")

    restored = load_snapshot(path, references)
    assert len(restored) == len(index)
    assert restored.entry_point == index.entry_point
    assert restored.max_level == index.max_level
    assert restored.params.m == index.params.m
    assert restored.params.ef_construction == index.params.ef_construction

    queries = np.random.default_rng(1).normal(size=(20, 16))
    for query in queries:
        before = index.search(query, 10, ef=64)
        after = restored.search(query, 10, ef=64)
        assert [m.id for m in before] == [m.id for m in after]
        for a, b in zip(before, after):
            assert abs(a.similarity - b.similarity) < 1e-6


def test_graph_preserved(built):
    references, index = built
    restored = decode_snapshot(encode_snapshot(index), references, 16)
    assert restored.levels == index.levels
    assert all(restored.node_links(i) == index.node_links(i) for i in range(len(index)))
    assert restored.unreachable_count() == 0


def test_header_layout(built):
    _, index = built
    data = encode_snapshot(index)
    magic, version, dimension, count, m, ef_construction, max_level, entry = \
        struct.unpack_from("<8sHIIIIii", data)
    assert magic == MAGIC
    assert version == 1
    assert (dimension, count, m, ef_construction) == (16, 300, 8, 64)
    assert max_level == index.max_level
    assert entry == index.entry_point


def test_empty_index_round_trip(tmp_path):
    index = HNSWIndex.build([], dimension=4)
    path = save_snapshot(index, tmp_path / "empty.hnsw")
    restored = load_snapshot(path, [], dimension=4)
    assert len(restored) == 0
    assert restored.search([1.0, 0.0, 0.0, 0.0], k=2) == []


def test_corrupted_byte_detected(built):
    references, index = built
    data = bytearray(encode_snapshot(index))
    data[len(data) // 2] ^= 0xFF
    with pytest.raises(SnapshotError, match="checksum"):
        decode_snapshot(bytes(data), references, 16)


def test_truncated_snapshot_detected(built):
    references, index = built
    data = encode_snapshot(index)
    with pytest.raises(SnapshotError):
        decode_snapshot(data[:-10], references, 16)
    with pytest.raises(SnapshotError):
        decode_snapshot(data[:10], references, 16)


def test_node_count_mismatch_detected(built):
    references, index = built
    with pytest.raises(SnapshotError, match="nodes"):
        decode_snapshot(encode_snapshot(index), references[:-1], 16)


def test_dimension_mismatch_detected(built):
    references, index = built
    with pytest.raises(SnapshotError, match="dimension"):
        decode_snapshot(encode_snapshot(index), references, 32)


def test_id_mismatch_detected(built):
    references, index = built
    reordered = list(references)
    reordered[0], reordered[1] = reordered[1], reordered[0]
    with pytest.raises(SnapshotError, match="does not match reference"):
        decode_snapshot(encode_snapshot(index), reordered, 16)


def test_wrong_magic_detected(built):
    references, index = built
    body = b"NOTMAGIC" + encode_snapshot(index)[8:-4]
    data = body + struct.pack("<I", zlib.crc32(body) & 0xFFFFFFFF)
    with pytest.raises(SnapshotError, match="magic"):
        decode_snapshot(data, references, 16)


def test_snapshot_error_requires_rebuild(tmp_path):
    with pytest.raises(SnapshotError) as excinfo:
        load_snapshot(tmp_path / "missing.hnsw", [make_reference("a", [1.0, 0.0])])
    assert excinfo.value.rebuild_required is True


def test_save_leaves_no_temp_files(tmp_path, built):
    _, index = built
    save_snapshot(index, tmp_path / "index.hnsw")
    save_snapshot(index, tmp_path / "index.hnsw")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["index.hnsw"]


def test_failed_save_keeps_previous_snapshot(tmp_path, built):
    references, index = built
    path = save_snapshot(index, tmp_path / "index.hnsw")
    original = path.read_bytes()

    with patch("geomatch.vector.snapshot.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            save_snapshot(index, path)

    assert path.read_bytes() == original
    assert sorted(p.name for p in tmp_path.iterdir()) == ["index.hnsw"]


def test_invalid_build_parameters_detected(built):
    references, index = built
    data = encode_snapshot(index)
    body = data[:18] + struct.pack("<I", 1) + data[22:-4]
    patched = body + struct.pack("<I", zlib.crc32(body) & 0xFFFFFFFF)
    with pytest.raises(SnapshotError, match="build parameters"):
        decode_snapshot(patched, references, 16)
