"""
test/test_grid_geometry.py - BlockTransformation / MultiblockGeometry 单元测试
"""
import pytest

from boxtree.errors import ConstructionError, DimensionMismatch, UsageError
from boxtree.grid_geometry import BlockTransformation, GridGeometry, MultiblockGeometry
from boxtree.models import BlockId, Box


def _box(lo, hi, block=0):
    return Box(tuple(lo), tuple(hi), BlockId(block))


# ─── BlockTransformation ───

class TestBlockTransformation:
    def test_identity(self):
        b = _box((1, 2), (3, 4))
        assert BlockTransformation.identity(2).apply(b) == b

    def test_shift_scaled_by_ratio(self):
        t = BlockTransformation.shift((-10, 0))
        assert t.apply(_box((10, 0), (11, 1))) == _box((0, 0), (1, 1))
        assert t.apply(_box((20, 0), (21, 1)), ratio=2) == _box((0, 0), (1, 1))

    def test_rotation_with_reflection(self):
        t = BlockTransformation(rotation=(1, 0), signs=(1, -1), offset=(0, 0))
        assert t.apply(_box((1, 2), (3, 5))) == _box((2, -4), (5, -2))

    @pytest.mark.parametrize("t", [
        BlockTransformation((1, 0), (1, -1), (0, 0)),
        BlockTransformation((0, 1), (-1, 1), (5, 0)),
        BlockTransformation((2, 0, 1), (-1, 1, -1), (3, -4, 7)),
    ])
    def test_inverse_round_trip(self, t):
        b = _box((1, 0, -2)[:t.dim], (2, 3, 4)[:t.dim])
        assert t.inverse().apply(t.apply(b)) == b
        assert t.inverse().apply(t.apply(b, ratio=2), ratio=2) == b

    def test_invalid(self):
        with pytest.raises(ConstructionError):
            BlockTransformation((0, 0), (1, 1), (0, 0))
        with pytest.raises(ConstructionError):
            BlockTransformation((0, 1), (1, 2), (0, 0))
        with pytest.raises(DimensionMismatch):
            BlockTransformation((0, 1), (1,), (0, 0))


# ─── MultiblockGeometry ───

class TestMultiblockGeometry:
    def test_satisfies_protocol(self, seam_geometry):
        assert isinstance(seam_geometry, GridGeometry)

    def test_neighbors_are_symmetric(self, seam_geometry):
        assert seam_geometry.get_neighbors(BlockId(0)) == {BlockId(1), BlockId(2)}
        assert seam_geometry.get_neighbors(BlockId(1)) == {BlockId(0)}
        assert seam_geometry.get_neighbors(BlockId(9)) == set()

    def test_singularity_flags(self, seam_geometry):
        assert seam_geometry.is_singularity_neighbor(0, 1)
        assert seam_geometry.is_singularity_neighbor(1, 0)
        assert not seam_geometry.is_singularity_neighbor(0, 2)
        assert not seam_geometry.is_singularity_neighbor(1, 2)
        assert seam_geometry.get_singularity_neighbors(0) == {BlockId(1)}

    def test_transform_both_directions(self, seam_geometry):
        b = _box((8, 0), (10, 2), 0)
        moved = seam_geometry.transform(BlockId(0), BlockId(1), b)
        assert moved == _box((-2, 0), (0, 2), 1)
        assert seam_geometry.transform(BlockId(1), BlockId(0), moved) == b

    def test_transform_unknown_adjacency(self, seam_geometry):
        with pytest.raises(UsageError):
            seam_geometry.transform(BlockId(1), BlockId(2), _box((0, 0), (1, 1), 1))

    def test_transform_dim_mismatch(self, seam_geometry):
        with pytest.raises(DimensionMismatch):
            seam_geometry.transform(BlockId(0), BlockId(1), _box((0,), (1,)))

    def test_self_neighbor_rejected(self):
        with pytest.raises(ConstructionError):
            MultiblockGeometry(dim=2).add_neighbor(3, 3)

    def test_transformation_dim_checked(self):
        with pytest.raises(DimensionMismatch):
            MultiblockGeometry(dim=2).add_neighbor(0, 1, BlockTransformation.identity(3))

    def test_dict_round_trip(self, seam_geometry, tmp_path):
        path = seam_geometry.to_json(tmp_path / "geom.json")
        loaded = MultiblockGeometry.from_json(path)
        assert loaded.to_dict() == seam_geometry.to_dict()
        assert loaded.is_singularity_neighbor(0, 1)
        assert loaded.n_blocks == 3

    def test_from_dict_defaults(self):
        geom = MultiblockGeometry.from_dict({
            'dim': 2,
            'neighbors': [{'blocks': [0, 1], 'singularity': True}],
        })
        assert geom.transform(0, 1, _box((0, 0), (1, 1))) == _box((0, 0), (1, 1), 1)

    def test_from_dict_requires_dim(self):
        with pytest.raises(ConstructionError):
            MultiblockGeometry.from_dict({'blocks': [0]})
