import hashlib

import httpx
import pytest
from hypothesis import given, settings, strategies as st

from cirrus.errors import IntegrityError
from cirrus.hashing.treehash import (
    CHUNK_SIZE,
    bind_hashes,
    reduce_level,
    tree_hash,
    tree_hash_from_parts,
    verify_integrity,
)
from cirrus.http.models import Request
from cirrus.http.payload import Payload

MiB = CHUNK_SIZE


def h(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def test_empty_payload_uses_hash_of_empty_string():
    th = tree_hash(b"")
    assert th.linear_hash == th.tree_hash == h(b"")
    assert th.tree_hex == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_single_chunk_tree_equals_linear():
    data = b"a" * MiB
    th = tree_hash(data)
    assert th.linear_hash == th.tree_hash == h(data)


def test_two_chunks_hash_pairwise():
    data = b"a" * (2 * MiB)
    leaf = h(b"a" * MiB)
    assert tree_hash(data).tree_hash == h(leaf + leaf)
    assert tree_hash(data).linear_hash == h(data)


def test_odd_leaf_is_promoted_unchanged():
    data = b"a" * (3 * MiB + MiB // 2)
    full, tail = h(b"a" * MiB), h(b"a" * (MiB // 2))
    expected = h(h(full + full) + h(full + tail))
    assert tree_hash(data).tree_hash == expected

    three = b"a" * (3 * MiB)
    assert tree_hash(three).tree_hash == h(h(full + full) + full)


def test_file_payload_matches_bytes(tmp_path):
    data = bytes(range(256)) * 9000
    p = tmp_path / "blob.bin"
    p.write_bytes(data)
    assert tree_hash(Payload.from_file(str(p))) == tree_hash(data)


def test_sliced_payload_hashes_only_its_window():
    data = b"x" * 100 + b"y" * 50 + b"z" * 10
    piece = Payload.from_bytes(data).slice(100, 50)
    assert tree_hash(piece).linear_hash == h(b"y" * 50)


def test_parts_combine_to_whole_archive_hash():
    data = b"a" * (2 * MiB) + b"b" * (2 * MiB) + b"c" * 123
    part_size = 2 * MiB
    parts = {
        i: tree_hash(data[i * part_size:(i + 1) * part_size]).tree_hash
        for i in range(-(-len(data) // part_size))
    }
    assert tree_hash_from_parts(parts) == tree_hash(data).tree_hash


def test_parts_are_ordered_by_part_number():
    a, b = h(b"first"), h(b"second")
    assert tree_hash_from_parts({2: b, 1: a}) == h(a + b)


def test_empty_inputs_rejected():
    with pytest.raises(ValueError):
        tree_hash_from_parts({})
    with pytest.raises(ValueError):
        reduce_level([])


@settings(max_examples=25, deadline=None)
@given(st.binary(min_size=1, max_size=4096))
def test_small_payload_tree_equals_linear(data):
    th = tree_hash(data)
    assert th.tree_hash == th.linear_hash == h(data)


def test_bind_hashes_sets_both_headers():
    req = Request.build("PUT", "https://glacier.us-east-1.amazonaws.com/-/vaults/v/archives", payload=b"a" * MiB)
    bound = bind_hashes(req)
    digest = h(b"a" * MiB).hex()
    assert bound.first_header("x-amz-content-sha256") == digest
    assert bound.first_header("x-amz-sha256-tree-hash") == digest
    with pytest.raises(ValueError):
        bind_hashes(Request.build("GET", "https://example.com/"))


def test_verify_integrity():
    expected = h(b"data")
    ok = httpx.Response(201, headers={"x-amz-sha256-tree-hash": expected.hex().upper()})
    verify_integrity(expected, ok)
    verify_integrity(expected, httpx.Response(201))

    bad = httpx.Response(201, headers={"x-amz-sha256-tree-hash": "00" * 32})
    with pytest.raises(IntegrityError) as ei:
        verify_integrity(expected.hex(), bad)
    assert ei.value.status == 201
