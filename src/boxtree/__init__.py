"""
boxtree - 多 block 网格上的 box overlap 查询树

为分布在多 block 网格（多个独立逻辑子区域，可沿奇异线相邻）上的
整数索引 box 集合建立空间索引，回答「哪些已存 box 与查询 box 相交
（可能位于邻居 block 的坐标系中）」。

核心组件：
1. SingleBlockBoxTree  - 单 block 递归二叉空间切分
2. MultiblockBoxTree   - 按 block 分发查询，跨奇异线做坐标变换，按细化比换算
3. MultiblockGeometry  - 表驱动的 block 邻接 / 变换服务（GridGeometry 接口）
"""

from .errors import BoxTreeError, ConstructionError, UsageError, DimensionMismatch
from .models import (
    BlockId,
    IntVector,
    Box,
    BoxSet,
    BoxTreeConfig,
    bounding_box,
)
from .box_tree import SingleBlockBoxTree, BoxTreeNode
from .grid_geometry import (
    GridGeometry,
    BlockTransformation,
    MultiblockGeometry,
)
from .multiblock_tree import MultiblockBoxTree
from .visualizer import plot_block_boxes

__version__ = "1.0.0"
__all__ = [
    # 数据模型
    'BlockId',
    'IntVector',
    'Box',
    'BoxSet',
    'BoxTreeConfig',
    'bounding_box',
    # 错误
    'BoxTreeError',
    'ConstructionError',
    'UsageError',
    'DimensionMismatch',
    # 树
    'SingleBlockBoxTree',
    'BoxTreeNode',
    'MultiblockBoxTree',
    # 几何
    'GridGeometry',
    'BlockTransformation',
    'MultiblockGeometry',
    # 可视化
    'plot_block_boxes',
]
