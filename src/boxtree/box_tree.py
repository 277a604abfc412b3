"""
boxtree/box_tree.py - 单 block box 树

对同一 block 内的一组 box 做递归二叉空间切分，用于 overlap 查询。

建树算法：
1. box 数 <= min_number 时直接存为叶节点
2. 否则计算各 box 中心（用 lower + upper 的二倍中心，保持整数精确），
   取中心散布最大的维度（并列时取最小维度号）
3. 在该维度的中心中位数处切分：``c < median`` 为左，其余为右；
   若左侧为空则改用 ``c <= median`` / ``c > median``
4. 若所有中心重合：box 完全相同时停为超大叶节点，
   否则按下标对半切分，保证严格收敛
5. 每个内部节点保存子树所有 box 的包围盒，查询时据此剪枝

min_number 只影响建树 / 查询速度的取舍，不影响查询结果。

使用方式：
    tree = SingleBlockBoxTree(boxes, min_number=10)
    tree.has_overlap(query)
    hits = tree.find_overlap_boxes([], query)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .errors import ConstructionError, check_dim
from .models import BlockId, Box, IntVectorLike, as_int_vector

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────
#  节点
# ─────────────────────────────────────────────────────

@dataclass
class BoxTreeNode:
    """box 树节点

    Attributes:
        lower: 子树包围盒下角点
        upper: 子树包围盒上角点
        left: 左子节点（中心坐标较小的一侧）
        right: 右子节点
        split_dim: 切分维度，叶节点为 None
        boxes: 叶节点存储的 box
        box_lower: 叶节点 box 下角点数组 (K, D)
        box_upper: 叶节点 box 上角点数组 (K, D)
    """
    lower: Tuple[int, ...]
    upper: Tuple[int, ...]
    left: Optional['BoxTreeNode'] = field(default=None, repr=False)
    right: Optional['BoxTreeNode'] = field(default=None, repr=False)
    split_dim: Optional[int] = None
    boxes: List[Box] = field(default_factory=list, repr=False)
    box_lower: Optional[np.ndarray] = field(default=None, repr=False)
    box_upper: Optional[np.ndarray] = field(default=None, repr=False)

    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    def bbox_overlaps(self, q_lower: Tuple[int, ...], q_upper: Tuple[int, ...]) -> bool:
        for lo, hi, qlo, qhi in zip(self.lower, self.upper, q_lower, q_upper):
            if hi < qlo or qhi < lo:
                return False
        return True


# ─────────────────────────────────────────────────────
#  输入校验
# ─────────────────────────────────────────────────────

def validate_block_boxes(boxes: List[Box]) -> Tuple[BlockId, int]:
    """校验单 block 建树输入，返回 (block_id, dim)

    Raises:
        ConstructionError: 无 box、存在空 box 或 BlockId 不一致
        DimensionMismatch: box 维度不一致
    """
    if not boxes:
        raise ConstructionError("单 block 树至少需要一个 box")
    first = boxes[0]
    for i, box in enumerate(boxes):
        if not isinstance(box, Box):
            raise ConstructionError(f"第 {i} 个元素不是 Box: {box!r}")
        check_dim(first.dim, box.dim, f"第 {i} 个 box")
        if box.is_empty:
            raise ConstructionError(f"不允许空 box: {box!r}")
        if box.block_id != first.block_id:
            raise ConstructionError(
                f"单 block 树中 BlockId 不一致: {first.block_id} vs {box.block_id}")
    return first.block_id, first.dim


# ─────────────────────────────────────────────────────
#  树
# ─────────────────────────────────────────────────────

class SingleBlockBoxTree:
    """单 block box 树（建成后不可变）

    Args:
        boxes: 同一 block 的非空 box 集合。若为 list，建树成功后会被清空
            （所有权转移给树）；校验失败时输入保持不变
        min_number: 叶节点 box 数阈值

    Attributes:
        block_id: 所有 box 共享的 BlockId
        dim: 维度
        min_number: 叶节点阈值
        depth: 树深度（仅根节点时为 0）
        n_nodes: 节点总数
    """

    def __init__(self, boxes: Iterable[Box], min_number: int = 10) -> None:
        if min_number < 1:
            raise ConstructionError(f"min_number 必须 >= 1，得到 {min_number}")
        box_list = list(boxes)
        self.block_id, self.dim = validate_block_boxes(box_list)
        if isinstance(boxes, list):
            # 所有权转移给树
            boxes.clear()

        self.min_number = min_number
        self.depth = 0
        self.n_nodes = 0
        self._boxes: List[Box] = []

        lower = np.array([b.lower for b in box_list], dtype=np.int64)
        upper = np.array([b.upper for b in box_list], dtype=np.int64)
        idx = np.arange(len(box_list))
        self._root = self._build(box_list, lower, upper, idx, 0)

        logger.debug("建树 block=%s: %d 个 box，%d 个节点，深度 %d",
                     self.block_id.value, len(self._boxes), self.n_nodes, self.depth)

    # ──────────────────────────────────────────────
    #  内部：建树
    # ──────────────────────────────────────────────

    def _build(
        self,
        boxes: List[Box],
        lower: np.ndarray,
        upper: np.ndarray,
        idx: np.ndarray,
        depth: int,
    ) -> BoxTreeNode:
        self.n_nodes += 1
        self.depth = max(self.depth, depth)

        lo = lower[idx]
        hi = upper[idx]
        node = BoxTreeNode(
            lower=tuple(int(v) for v in lo.min(axis=0)),
            upper=tuple(int(v) for v in hi.max(axis=0)),
        )

        n = len(idx)
        if n <= self.min_number:
            return self._make_leaf(node, boxes, lo, hi, idx)

        centers = lo + hi  # 二倍中心，整数精确
        spread = centers.max(axis=0) - centers.min(axis=0)

        if not spread.any():
            if (lo == lo[0]).all() and (hi == hi[0]).all():
                # 完全相同的 box 无法再分
                logger.debug("block=%s: %d 个相同 box 存为超大叶节点",
                             self.block_id.value, n)
                return self._make_leaf(node, boxes, lo, hi, idx)
            # 中心全部重合：按下标对半
            half = n // 2
            left_idx, right_idx = idx[:half], idx[half:]
            node.split_dim = int(np.argmax(hi.max(axis=0) - lo.min(axis=0)))
        else:
            dim = int(np.argmax(spread))
            c = centers[:, dim]
            order = np.argsort(c, kind='stable')
            median = c[order[n // 2]]
            mask = c < median
            if not mask.any():
                mask = c <= median
            left_idx, right_idx = idx[mask], idx[~mask]
            node.split_dim = dim

        node.left = self._build(boxes, lower, upper, left_idx, depth + 1)
        node.right = self._build(boxes, lower, upper, right_idx, depth + 1)
        return node

    def _make_leaf(
        self,
        node: BoxTreeNode,
        boxes: List[Box],
        lo: np.ndarray,
        hi: np.ndarray,
        idx: np.ndarray,
    ) -> BoxTreeNode:
        node.boxes = [boxes[i] for i in idx]
        node.box_lower = lo
        node.box_upper = hi
        self._boxes.extend(node.boxes)
        return node

    # ──────────────────────────────────────────────
    #  查询
    # ──────────────────────────────────────────────

    def _iter_overlaps(self, box: Box) -> Iterator[Box]:
        """按左→右顺序产出与 box 相交的已存 box"""
        check_dim(self.dim, box.dim, "查询 box")
        if box.is_empty:
            return
        q_lower, q_upper = box.lower, box.upper
        q_lo = np.array(q_lower, dtype=np.int64)
        q_hi = np.array(q_upper, dtype=np.int64)

        stack = [self._root]
        while stack:
            node = stack.pop()
            if not node.bbox_overlaps(q_lower, q_upper):
                continue
            if node.is_leaf():
                hits = (np.all(node.box_lower <= q_hi, axis=1)
                        & np.all(node.box_upper >= q_lo, axis=1))
                for i in np.flatnonzero(hits):
                    yield node.boxes[i]
            else:
                stack.append(node.right)
                stack.append(node.left)

    def has_overlap(self, box: Box) -> bool:
        """是否存在与 box 相交的已存 box（命中即返回）

        只比较坐标，不比较 BlockId：跨 block 查询时调用方负责先把
        box 变换到本 block 的坐标系。
        """
        for _ in self._iter_overlaps(box):
            return True
        return False

    def find_overlap_boxes(self, output: List[Box], box: Box) -> List[Box]:
        """把所有与 box 相交的已存 box 追加到 output

        output 不会被清空，多次调用的结果会累积。

        Returns:
            output 本身
        """
        output.extend(self._iter_overlaps(box))
        return output

    def get_boxes(self) -> List[Box]:
        """所有已存 box（新 list）"""
        return list(self._boxes)

    def create_refined_tree(self, ratio: IntVectorLike) -> 'SingleBlockBoxTree':
        """用 ratio 细化所有 box 后重建一棵新树（min_number 不变）"""
        r = as_int_vector(ratio, self.dim, "refine ratio")
        if r.min() < 1:
            raise ConstructionError(f"细化比必须各维 >= 1，得到 {r}")
        return SingleBlockBoxTree([b.refine(r) for b in self._boxes], self.min_number)

    # ──────────────────────────────────────────────
    #  属性
    # ──────────────────────────────────────────────

    @property
    def root(self) -> BoxTreeNode:
        return self._root

    @property
    def n_boxes(self) -> int:
        return len(self._boxes)

    def __len__(self) -> int:
        return len(self._boxes)

    @property
    def bounding_box(self) -> Box:
        """所有 box 的包围盒"""
        return Box(self._root.lower, self._root.upper, self.block_id)

    def __repr__(self) -> str:
        return (f"SingleBlockBoxTree(block={self.block_id.value}, n_boxes={self.n_boxes}, "
                f"depth={self.depth}, min_number={self.min_number})")
