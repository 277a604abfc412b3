"""
boxtree/multiblock_tree.py - 多 block box 树

每个出现过的 block 持有一棵 SingleBlockBoxTree，并以非拥有方式引用
GridGeometry。查询流程：

    MultiblockBoxTree
      → 查询 box 换算到树的分辨率（refinement_ratio）
      → 本 block 子树
      → （可选）跨奇异线的邻居 block：经 GridGeometry 变换后查询其子树

核心特性：
- **两种状态**：未初始化（无子树）/ 已初始化；未初始化时任何查询都抛 UsageError
- **先校验后修改**：generate_tree 在替换任何子树之前校验全部输入
- **结果累积**：find_* 系列不清空输出容器，多次调用结果累积
- **只读共享**：建成后所有查询只读，多线程并发读无需加锁；
  generate_tree / clear 需调用方保证单写者

使用方式：
    geom = MultiblockGeometry(dim=2)
    geom.add_neighbor(0, 1, BlockTransformation.shift((-10, 0)), is_singularity=True)
    tree = MultiblockBoxTree(geom, boxes, min_number=10)

    hits = BoxSet()
    tree.find_overlap_boxes(hits, query, include_singularity_neighbors=True)
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .box_tree import SingleBlockBoxTree
from .errors import ConstructionError, UsageError, check_dim
from .grid_geometry import GridGeometry
from .models import (
    BlockId,
    BlockIdLike,
    Box,
    BoxSet,
    BoxTreeConfig,
    IntVector,
    IntVectorLike,
    as_block_id,
    as_int_vector,
)

logger = logging.getLogger(__name__)

BoxInput = Union[Iterable[Box], Mapping[BlockIdLike, Iterable[Box]]]


class MultiblockBoxTree:
    """多 block box 树

    Args:
        grid_geometry: 多 block 几何（非拥有引用，生命周期必须覆盖本树）
        boxes: 扁平 box 集合（按各自 BlockId 分组），或 {BlockId: box 集合}。
            为 None 时构造未初始化的树
        min_number: 叶节点 box 数阈值
        refinement_ratio: 已存 box 所在索引空间相对几何基准空间的细化比，
            默认各维为 1

    Attributes:
        include_singularity_neighbors: 查询未显式指定时是否包含奇异邻居
        build_time: 最近一次建树耗时 (s)
    """

    def __init__(
        self,
        grid_geometry: Optional[GridGeometry] = None,
        boxes: Optional[BoxInput] = None,
        min_number: int = 10,
        refinement_ratio: Optional[IntVectorLike] = None,
    ) -> None:
        self._trees: Dict[BlockId, SingleBlockBoxTree] = {}
        self._grid_geometry: Optional[GridGeometry] = None
        self._refinement_ratio: Optional[IntVector] = None
        self._min_number = min_number
        self._initialized = False
        self.include_singularity_neighbors = False
        self.build_time: float = 0.0

        if boxes is not None:
            if grid_geometry is None:
                raise ConstructionError("提供 boxes 时必须同时提供 grid_geometry")
            self.generate_tree(grid_geometry, boxes, min_number, refinement_ratio)

    @classmethod
    def from_config(
        cls,
        grid_geometry: GridGeometry,
        boxes: BoxInput,
        config: BoxTreeConfig,
    ) -> 'MultiblockBoxTree':
        """按 BoxTreeConfig 建树，config 中的开关成为查询默认值"""
        tree = cls(grid_geometry, boxes, min_number=config.min_number)
        tree.include_singularity_neighbors = config.include_singularity_neighbors
        return tree

    # ──────────────────────────────────────────────
    #  建树
    # ──────────────────────────────────────────────

    def generate_tree(
        self,
        grid_geometry: GridGeometry,
        boxes: BoxInput,
        min_number: int = 10,
        refinement_ratio: Optional[IntVectorLike] = None,
    ) -> None:
        """（重新）建树

        输入中的 list 在成功建树后被清空（所有权转移给树），
        之后修改这些 list 不会影响树。校验失败时树和输入都保持原状。

        Raises:
            ConstructionError: 空 box、映射 key 与 box 的 BlockId 不一致、
                min_number / refinement_ratio 无效
            DimensionMismatch: box 或细化比维度与几何不一致
        """
        t0 = time.perf_counter()
        if not isinstance(grid_geometry, GridGeometry):
            raise ConstructionError(
                f"grid_geometry 不满足 GridGeometry 接口: {type(grid_geometry).__name__}")
        if min_number < 1:
            raise ConstructionError(f"min_number 必须 >= 1，得到 {min_number}")
        dim = grid_geometry.dim
        if refinement_ratio is None:
            ratio = IntVector.ones(dim)
        else:
            ratio = as_int_vector(refinement_ratio, dim, "refinement_ratio")
            if ratio.min() < 1:
                raise ConstructionError(f"细化比必须各维 >= 1，得到 {ratio}")

        groups = self._group_boxes(boxes, dim)

        trees = {
            bid: SingleBlockBoxTree(group, min_number)
            for bid, group in sorted(groups.items())
        }
        _release_input(boxes)

        self._trees = trees
        self._grid_geometry = grid_geometry
        self._refinement_ratio = ratio
        self._min_number = min_number
        self._initialized = True
        self.build_time = time.perf_counter() - t0

        logger.info(
            "MultiblockBoxTree.generate_tree: %d boxes in %d blocks, %.2f ms",
            self.n_boxes, len(trees), self.build_time * 1000.0,
        )

    @staticmethod
    def _group_boxes(boxes: BoxInput, dim: int) -> Dict[BlockId, List[Box]]:
        """校验并按 BlockId 分组（不修改输入）"""
        groups: Dict[BlockId, List[Box]] = {}

        if isinstance(boxes, Mapping):
            for key, collection in boxes.items():
                bid = as_block_id(key)
                for box in collection:
                    _validate_box(box, dim)
                    if box.block_id != bid:
                        raise ConstructionError(
                            f"box {box!r} 的 BlockId 与映射 key {bid} 不一致")
                    groups.setdefault(bid, []).append(box)
        else:
            for box in boxes:
                _validate_box(box, dim)
                groups.setdefault(box.block_id, []).append(box)
        return groups

    def clear(self) -> None:
        """重置为未初始化状态（释放子树和几何引用）"""
        self._trees = {}
        self._grid_geometry = None
        self._refinement_ratio = None
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise UsageError("MultiblockBoxTree 未初始化，请先调用 generate_tree()")

    # ──────────────────────────────────────────────
    #  block 访问
    # ──────────────────────────────────────────────

    def has_box_in_block(self, block_id: BlockIdLike) -> bool:
        """树中是否有该 block 的 box"""
        self._require_initialized()
        return as_block_id(block_id) in self._trees

    def get_single_block_box_tree(self, block_id: BlockIdLike) -> SingleBlockBoxTree:
        """返回单 block 子树

        Raises:
            UsageError: 树中没有该 block 的 box（先用 has_box_in_block 检查）
        """
        self._require_initialized()
        bid = as_block_id(block_id)
        tree = self._trees.get(bid)
        if tree is None:
            raise UsageError(f"树中没有 block {bid.value} 的 box")
        return tree

    # ──────────────────────────────────────────────
    #  内部：查询分发
    # ──────────────────────────────────────────────

    def _prepare_query(
        self,
        box: Box,
        block_id: Optional[BlockIdLike],
        refinement_ratio: Optional[IntVectorLike],
    ) -> Tuple[Box, BlockId]:
        self._require_initialized()
        check_dim(self.dim, box.dim, "查询 box")
        bid = box.block_id if block_id is None else as_block_id(block_id)
        if bid != box.block_id:
            raise UsageError(
                f"查询 box 的 BlockId {box.block_id.value} 与 block_id {bid.value} 不一致")
        return self._to_tree_resolution(box, refinement_ratio), bid

    def _to_tree_resolution(
        self, box: Box, refinement_ratio: Optional[IntVectorLike],
    ) -> Box:
        """把查询 box 从 refinement_ratio 索引空间换算到树的索引空间

        逐维处理：树更细则细化，树更粗则向下取整粗化。
        """
        if refinement_ratio is None:
            return box
        r_query = as_int_vector(refinement_ratio, self.dim, "refinement_ratio")
        if r_query.min() < 1:
            raise UsageError(f"细化比必须各维 >= 1，得到 {r_query}")
        if r_query == self._refinement_ratio:
            return box

        refine = []
        coarsen = []
        for rq, rt in zip(r_query, self._refinement_ratio):
            if rt % rq == 0:
                refine.append(rt // rq)
                coarsen.append(1)
            elif rq % rt == 0:
                refine.append(1)
                coarsen.append(rq // rt)
            else:
                raise UsageError(
                    f"查询细化比 {r_query} 与树细化比 {self._refinement_ratio} 无法整除换算")
        return box.refine(IntVector(tuple(refine))).coarsen(IntVector(tuple(coarsen)))

    def _iter_searches(
        self, box: Box, block_id: BlockId, include_singularity_neighbors: bool,
    ) -> Iterator[Tuple[SingleBlockBoxTree, Box]]:
        """惰性产出 (子树, 该子树坐标系下的查询 box)"""
        tree = self._trees.get(block_id)
        if tree is not None:
            yield tree, box
        if not include_singularity_neighbors:
            return

        geom = self._grid_geometry
        for nb in sorted(geom.get_neighbors(block_id)):
            if nb == block_id or nb not in self._trees:
                continue
            if not geom.is_singularity_neighbor(block_id, nb):
                continue
            transformed = geom.transform(block_id, nb, box, ratio=self._refinement_ratio)
            yield self._trees[nb], transformed

    def _flag(self, include_singularity_neighbors: Optional[bool]) -> bool:
        if include_singularity_neighbors is None:
            return self.include_singularity_neighbors
        return include_singularity_neighbors

    def _collect(
        self,
        box: Box,
        block_id: Optional[BlockIdLike],
        refinement_ratio: Optional[IntVectorLike],
        include_singularity_neighbors: Optional[bool],
    ) -> List[Box]:
        query, bid = self._prepare_query(box, block_id, refinement_ratio)
        hits: List[Box] = []
        for tree, q in self._iter_searches(query, bid, self._flag(include_singularity_neighbors)):
            tree.find_overlap_boxes(hits, q)
        return hits

    # ──────────────────────────────────────────────
    #  核心 API：overlap 查询
    # ──────────────────────────────────────────────

    def has_overlap(
        self,
        box: Box,
        block_id: Optional[BlockIdLike] = None,
        include_singularity_neighbors: Optional[bool] = None,
        refinement_ratio: Optional[IntVectorLike] = None,
    ) -> bool:
        """box 是否与树中任何 box 相交

        Args:
            box: 查询 box
            block_id: box 所在 block，默认取 box.block_id
            include_singularity_neighbors: 是否同时查询跨奇异线的邻居 block，
                None 时取 self.include_singularity_neighbors
            refinement_ratio: box 所在索引空间的细化比，默认与树相同

        Returns:
            任一子树命中即返回 True（整个搜索短路）
        """
        query, bid = self._prepare_query(box, block_id, refinement_ratio)
        for tree, q in self._iter_searches(query, bid, self._flag(include_singularity_neighbors)):
            if tree.has_overlap(q):
                return True
        return False

    def find_overlap_boxes(
        self,
        output: Union[BoxSet, List[Box]],
        box: Box,
        block_id: Optional[BlockIdLike] = None,
        refinement_ratio: Optional[IntVectorLike] = None,
        include_singularity_neighbors: Optional[bool] = None,
    ) -> Union[BoxSet, List[Box]]:
        """把所有与 box 相交的 box 加入 output

        output 为 BoxSet 时结果有序去重（BlockId，角点字典序）；
        为 list 时按发现顺序追加独立副本。output 不会被清空。
        跨 block 命中的 box 保持其自身 block 的坐标和 BlockId。

        Returns:
            output 本身
        """
        hits = self._collect(box, block_id, refinement_ratio, include_singularity_neighbors)
        if isinstance(output, BoxSet):
            output.update(hits)
        elif isinstance(output, list):
            output.extend(copy.copy(b) for b in hits)
        else:
            raise TypeError(f"output 必须是 BoxSet 或 list，得到 {type(output).__name__}")
        return output

    def find_overlap_box_refs(
        self,
        output: List[Box],
        box: Box,
        block_id: Optional[BlockIdLike] = None,
        refinement_ratio: Optional[IntVectorLike] = None,
        include_singularity_neighbors: Optional[bool] = None,
    ) -> List[Box]:
        """同 find_overlap_boxes，但追加树内已存 box 对象本身（无拷贝）

        结果只在树未被 generate_tree / clear 替换期间与树内容一致。
        """
        output.extend(
            self._collect(box, block_id, refinement_ratio, include_singularity_neighbors))
        return output

    # ──────────────────────────────────────────────
    #  其它
    # ──────────────────────────────────────────────

    def get_boxes(self, output: Optional[List[Box]] = None) -> List[Box]:
        """追加所有 block 的 box（按 BlockId 顺序）"""
        self._require_initialized()
        if output is None:
            output = []
        for bid in sorted(self._trees):
            output.extend(self._trees[bid].get_boxes())
        return output

    def create_refined_tree(self, ratio: IntVectorLike) -> 'MultiblockBoxTree':
        """用 ratio 细化后生成新树

        各 block 在自身坐标系内独立细化，新树与本树只共享几何引用。
        粗化树无法这样直接生成，需取出 box 粗化后重新建树。
        """
        self._require_initialized()
        r = as_int_vector(ratio, self.dim, "refine ratio")
        if r.min() < 1:
            raise ConstructionError(f"细化比必须各维 >= 1，得到 {r}")

        refined = MultiblockBoxTree(min_number=self._min_number)
        refined._trees = {
            bid: tree.create_refined_tree(r) for bid, tree in self._trees.items()
        }
        refined._grid_geometry = self._grid_geometry
        refined._refinement_ratio = self._refinement_ratio * r
        refined._initialized = True
        refined.include_singularity_neighbors = self.include_singularity_neighbors
        logger.debug("create_refined_tree: ratio=%s, %d blocks", r, len(refined._trees))
        return refined

    # ──────────────────────────────────────────────
    #  属性
    # ──────────────────────────────────────────────

    @property
    def grid_geometry(self) -> GridGeometry:
        self._require_initialized()
        return self._grid_geometry

    @property
    def dim(self) -> int:
        self._require_initialized()
        return self._grid_geometry.dim

    @property
    def refinement_ratio(self) -> IntVector:
        self._require_initialized()
        return self._refinement_ratio

    @property
    def min_number(self) -> int:
        return self._min_number

    @property
    def block_ids(self) -> List[BlockId]:
        return sorted(self._trees)

    @property
    def n_blocks(self) -> int:
        return len(self._trees)

    @property
    def n_boxes(self) -> int:
        return sum(t.n_boxes for t in self._trees.values())

    def __repr__(self) -> str:
        if not self._initialized:
            return "MultiblockBoxTree(uninitialized)"
        return (f"MultiblockBoxTree(n_blocks={self.n_blocks}, n_boxes={self.n_boxes}, "
                f"ratio={self._refinement_ratio})")


def _validate_box(box: Box, dim: int) -> None:
    if not isinstance(box, Box):
        raise ConstructionError(f"元素不是 Box: {box!r}")
    check_dim(dim, box.dim, "box")
    if box.is_empty:
        raise ConstructionError(f"不允许空 box: {box!r}")


def _release_input(boxes: BoxInput) -> None:
    """清空调用方交给树的 list"""
    if isinstance(boxes, Mapping):
        for collection in boxes.values():
            if isinstance(collection, list):
                collection.clear()
    elif isinstance(boxes, list):
        boxes.clear()
