"""
test/test_models.py - Box / BlockId / IntVector / BoxSet / BoxTreeConfig 单元测试
"""
import numpy as np
import pytest

from boxtree.errors import ConstructionError, DimensionMismatch
from boxtree.models import (
    BlockId,
    Box,
    BoxSet,
    BoxTreeConfig,
    IntVector,
    as_int_vector,
    bounding_box,
)


def _box(lo, hi, block=0):
    return Box(tuple(lo), tuple(hi), BlockId(block))


# ─── BlockId / IntVector ───

class TestBlockId:
    def test_ordering_and_hash(self):
        assert BlockId(0) < BlockId(3)
        assert {BlockId(1): 'a'}[BlockId(1)] == 'a'

    def test_int_accepted_by_box(self):
        assert Box((0,), (1,), 4).block_id == BlockId(4)


class TestIntVector:
    def test_basic(self):
        r = IntVector((2, 3))
        assert r.dim == 2
        assert list(r) == [2, 3]
        assert r * IntVector((2, 1)) == IntVector((4, 3))
        assert IntVector.ones(3).is_ones()

    def test_as_int_vector_scalar(self):
        assert as_int_vector(2, 3) == IntVector((2, 2, 2))

    def test_as_int_vector_dim_mismatch(self):
        with pytest.raises(DimensionMismatch):
            as_int_vector((1, 2, 3), 2)


# ─── Box ───

class TestBox:
    def test_shape_size_center(self):
        b = _box((0, 2), (3, 2))
        assert b.shape == (4, 1)
        assert b.size == 4
        np.testing.assert_allclose(b.center, [1.5, 2.0])

    def test_lower_upper_length_mismatch(self):
        with pytest.raises(DimensionMismatch):
            Box((0, 0), (1,))

    def test_empty(self):
        assert _box((3, 0), (2, 0)).is_empty
        assert not _box((2, 0), (2, 0)).is_empty
        assert _box((3, 0), (2, 0)).size == 0

    def test_intersects_inclusive(self):
        a = _box((0, 0), (3, 3))
        assert a.intersects(_box((3, 3), (5, 5)))  # 共享一个 cell
        assert not a.intersects(_box((4, 0), (5, 3)))  # 仅面相接

    def test_intersects_ignores_block(self):
        assert _box((0, 0), (1, 1), 0).intersects(_box((1, 1), (2, 2), 7))

    def test_empty_never_intersects(self):
        big = _box((-100, -100), (100, 100))
        assert not big.intersects(_box((5, 0), (3, 0)))

    def test_intersection(self):
        got = _box((0, 0), (4, 4)).intersection(_box((2, -1), (6, 3)))
        assert got == _box((2, 0), (4, 3))
        assert _box((0, 0), (1, 1)).intersection(_box((5, 5), (6, 6))).is_empty

    def test_contains(self):
        assert _box((0, 0), (4, 4)).contains(_box((1, 1), (4, 2)))
        assert not _box((0, 0), (4, 4)).contains(_box((1, 1), (5, 2)))

    def test_refine(self):
        assert _box((1, -1), (2, 0)).refine(2) == _box((2, -2), (5, 1))
        assert _box((1, 1), (1, 1)).refine((2, 3)) == _box((2, 3), (3, 5))

    def test_coarsen_floor(self):
        assert _box((-3, 5), (3, 7)).coarsen(2) == _box((-2, 2), (1, 3))

    def test_refine_then_coarsen_identity(self):
        b = _box((-7, 4), (2, 9))
        assert b.refine((3, 2)).coarsen((3, 2)) == b

    def test_grow(self):
        assert _box((0, 0), (1, 1)).grow((1, 2)) == _box((-1, -2), (2, 3))

    def test_dim_mismatch(self):
        with pytest.raises(DimensionMismatch):
            _box((0, 0), (1, 1)).intersects(_box((0,), (1,)))
        with pytest.raises(DimensionMismatch):
            _box((0, 0), (1, 1)).refine((2, 2, 2))

    def test_sort_key_block_first(self):
        a = _box((9, 9), (9, 9), block=0)
        b = _box((0, 0), (0, 0), block=1)
        assert a.sort_key < b.sort_key

    def test_bounding_box(self):
        bb = bounding_box([_box((0, 5), (1, 6)), _box((-2, 0), (0, 1))])
        assert bb == _box((-2, 0), (1, 6))


# ─── BoxSet ───

class TestBoxSet:
    def test_sorted_and_unique(self):
        s = BoxSet()
        s.add(_box((5, 5), (6, 6), 1))
        s.add(_box((0, 0), (1, 1), 1))
        s.add(_box((9, 9), (9, 9), 0))
        assert not s.add(_box((0, 0), (1, 1), 1))
        assert len(s) == 3
        assert s.to_list() == [
            _box((9, 9), (9, 9), 0),
            _box((0, 0), (1, 1), 1),
            _box((5, 5), (6, 6), 1),
        ]

    def test_equality_independent_of_insert_order(self):
        boxes = [_box((i, 0), (i, 0)) for i in range(6)]
        assert BoxSet(boxes) == BoxSet(reversed(boxes))

    def test_clear(self):
        s = BoxSet([_box((0, 0), (0, 0))])
        s.clear()
        assert len(s) == 0
        assert _box((0, 0), (0, 0)) not in s


# ─── BoxTreeConfig ───

class TestBoxTreeConfig:
    def test_defaults(self):
        cfg = BoxTreeConfig()
        assert cfg.min_number == 10
        assert cfg.include_singularity_neighbors is False

    def test_invalid_min_number(self):
        with pytest.raises(ConstructionError):
            BoxTreeConfig(min_number=0)

    def test_from_dict_ignores_unknown(self):
        cfg = BoxTreeConfig.from_dict({'min_number': 4, 'unknown': 1})
        assert cfg.min_number == 4

    def test_json(self, tmp_path):
        path = BoxTreeConfig(min_number=3, include_singularity_neighbors=True).to_json(
            tmp_path / "cfg" / "tree.json")
        loaded = BoxTreeConfig.from_json(path)
        assert loaded == BoxTreeConfig(min_number=3, include_singularity_neighbors=True)
