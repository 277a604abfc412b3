"""
test/conftest.py - pytest fixtures shared across the test suite.

Provides a small hand-checked box layout and a three-block geometry with a
singularity seam so that individual test modules stay short and focused.
"""

import os

import pytest

os.environ.setdefault("MPLBACKEND", "Agg")

from boxtree.models import BlockId, Box
from boxtree.grid_geometry import BlockTransformation, MultiblockGeometry


# =========================================================================
# Geometry fixtures
# =========================================================================

@pytest.fixture()
def seam_geometry() -> MultiblockGeometry:
    """Blocks 0 and 1 meet across a singularity; block 1 starts at x=10
    of block 0, so block-0 index i maps to block-1 index i-10.

    Block 2 is a regular (non-singular) neighbor of block 0 with the same
    mapping, used to check that ordinary adjacency is not searched.
    """
    geom = MultiblockGeometry(dim=2)
    geom.add_neighbor(0, 1, BlockTransformation.shift((-10, 0)), is_singularity=True)
    geom.add_neighbor(0, 2, BlockTransformation.shift((-10, 0)), is_singularity=False)
    return geom


@pytest.fixture()
def single_block_geometry() -> MultiblockGeometry:
    return MultiblockGeometry(dim=2, block_ids=[0])


# =========================================================================
# Box fixtures
# =========================================================================

@pytest.fixture()
def example_boxes():
    """A=[0,0]-[3,3], B=[5,5]-[8,8], both in block 0."""
    return (
        Box((0, 0), (3, 3), BlockId(0)),
        Box((5, 5), (8, 8), BlockId(0)),
    )
