"""
boxtree/visualizer.py - box 树可视化 (matplotlib)

每个 block 一个子图，在各自的索引空间中绘制已存 box；
可选地高亮一个查询 box 及其命中结果（跨奇异线的命中画在目标 block 中）。
D > 2 时投影到 (dim_x, dim_y) 两维。
"""

import logging
import math
from typing import Any, List, Optional, Tuple

from .models import Box
from .multiblock_tree import MultiblockBoxTree

logger = logging.getLogger(__name__)


def _add_box_patch(ax, box: Box, dim_x: int, dim_y: int, **kwargs) -> None:
    from matplotlib.patches import Rectangle

    # cell [lo, hi] 覆盖连续区间 [lo, hi + 1)
    x0, y0 = box.lower[dim_x], box.lower[dim_y]
    w = box.upper[dim_x] - x0 + 1
    h = box.upper[dim_y] - y0 + 1
    ax.add_patch(Rectangle((x0, y0), w, h, **kwargs))


def plot_block_boxes(
    tree: MultiblockBoxTree,
    query: Optional[Box] = None,
    include_singularity_neighbors: bool = False,
    dim_x: int = 0,
    dim_y: int = 1,
    ncols: int = 3,
    figsize_per_block: Tuple[float, float] = (4.0, 4.0),
    title: str = "MultiblockBoxTree",
) -> Any:
    """绘制多 block box 树

    Args:
        tree: 已初始化的 MultiblockBoxTree
        query: 查询 box（可选），以红色虚线框绘制在其所属 block
        include_singularity_neighbors: 查询时是否包含奇异邻居
        dim_x, dim_y: 投影维度
        ncols: 每行子图数
        figsize_per_block: 单个子图尺寸
        title: 总标题

    Returns:
        matplotlib figure
    """
    import matplotlib.pyplot as plt

    block_ids = tree.block_ids
    if query is not None and query.block_id not in block_ids:
        block_ids = sorted(block_ids + [query.block_id])
    n = max(len(block_ids), 1)
    ncols = max(1, min(ncols, n))
    nrows = math.ceil(n / ncols)
    fig, axes = plt.subplots(
        nrows, ncols,
        figsize=(figsize_per_block[0] * ncols, figsize_per_block[1] * nrows),
        squeeze=False,
    )

    hits: List[Box] = []
    if query is not None:
        tree.find_overlap_box_refs(
            hits, query, include_singularity_neighbors=include_singularity_neighbors)
    hit_set = set(hits)

    for k, bid in enumerate(block_ids):
        ax = axes[k // ncols][k % ncols]
        boxes = (tree.get_single_block_box_tree(bid).get_boxes()
                 if tree.has_box_in_block(bid) else [])
        for box in boxes:
            color = 'tab:orange' if box in hit_set else 'tab:blue'
            _add_box_patch(ax, box, dim_x, dim_y,
                           linewidth=0.8, edgecolor=color, facecolor=color, alpha=0.3)
        if query is not None and query.block_id == bid:
            _add_box_patch(ax, query, dim_x, dim_y,
                           linewidth=1.5, edgecolor='red', facecolor='none',
                           linestyle='--')
        ax.autoscale_view()
        ax.set_title(f"block {bid.value} ({len(boxes)} boxes)")
        ax.set_xlabel(f"i{dim_x}")
        ax.set_ylabel(f"i{dim_y}")
        ax.set_aspect('equal')
        ax.grid(True, alpha=0.3)

    # 多余子图隐藏
    for k in range(len(block_ids), nrows * ncols):
        axes[k // ncols][k % ncols].set_visible(False)

    fig.suptitle(title)
    logger.debug("plot_block_boxes: %d blocks, %d hits", len(block_ids), len(hits))
    return fig
