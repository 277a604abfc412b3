"""
boxtree/grid_geometry.py - 多 block 几何（block 邻接与坐标变换）

MultiblockBoxTree 只把几何对象当作查询服务：
- block A、B 是否相邻，邻接是否跨奇异线（singularity）
- 把 A 坐标系中的 box 变换到 B 坐标系的变换

本模块提供：
- GridGeometry: 树所依赖的结构化接口（Protocol）
- BlockTransformation: 整数旋转（轴置换 + 各轴符号）+ 平移
- MultiblockGeometry: 表驱动的 GridGeometry 实现，可从 JSON 加载

坐标约定：
    cell 中心索引的反射为 i → -i-1，平移量以基准（最粗）索引空间给出，
    变换时按细化比放大。

JSON 格式：
    {
      "dim": 2,
      "blocks": [0, 1, 2],
      "neighbors": [
        {"blocks": [0, 1], "singularity": true,
         "rotation": [1, 0], "signs": [1, -1], "offset": [10, 0]}
      ]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Set, Tuple, runtime_checkable

from .errors import ConstructionError, UsageError, check_dim
from .models import (
    BlockId,
    BlockIdLike,
    Box,
    IntVector,
    IntVectorLike,
    as_block_id,
    as_int_vector,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class GridGeometry(Protocol):
    """MultiblockBoxTree 查询的几何服务

    实现方必须只读、可被多棵树共享，且生命周期覆盖所有引用它的树。
    """

    dim: int

    def get_neighbors(self, block_id: BlockId) -> Set[BlockId]:
        ...

    def is_singularity_neighbor(self, block_a: BlockId, block_b: BlockId) -> bool:
        ...

    def transform(
        self,
        from_block: BlockId,
        to_block: BlockId,
        box: Box,
        ratio: Optional[IntVector] = None,
    ) -> Box:
        ...


# ─────────────────────────────────────────────────────
#  坐标变换
# ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class BlockTransformation:
    """block 间的整数坐标变换

    输出第 i 维取源 box 的第 rotation[i] 维，signs[i] = -1 时做 cell 反射，
    再加上 offset[i] * ratio[rotation[i]]。

    Attributes:
        rotation: 轴置换
        signs: 各输出轴符号（+1 / -1）
        offset: 基准索引空间中的平移量
    """
    rotation: Tuple[int, ...]
    signs: Tuple[int, ...]
    offset: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, 'rotation', tuple(int(v) for v in self.rotation))
        object.__setattr__(self, 'signs', tuple(int(v) for v in self.signs))
        object.__setattr__(self, 'offset', tuple(int(v) for v in self.offset))
        dim = len(self.rotation)
        check_dim(dim, len(self.signs), "BlockTransformation.signs")
        check_dim(dim, len(self.offset), "BlockTransformation.offset")
        if sorted(self.rotation) != list(range(dim)):
            raise ConstructionError(f"rotation 必须是 0..{dim - 1} 的置换: {self.rotation}")
        if any(s not in (1, -1) for s in self.signs):
            raise ConstructionError(f"signs 只能为 ±1: {self.signs}")

    @classmethod
    def identity(cls, dim: int) -> 'BlockTransformation':
        return cls(tuple(range(dim)), (1,) * dim, (0,) * dim)

    @classmethod
    def shift(cls, offset: Iterable[int]) -> 'BlockTransformation':
        """纯平移"""
        offset = tuple(offset)
        dim = len(offset)
        return cls(tuple(range(dim)), (1,) * dim, offset)

    @property
    def dim(self) -> int:
        return len(self.rotation)

    def apply(self, box: Box, ratio: Optional[IntVectorLike] = None) -> Box:
        """变换 box（ratio 为源坐标系下的细化比，BlockId 保持不变）"""
        check_dim(self.dim, box.dim, "变换 box")
        r = IntVector.ones(self.dim) if ratio is None else as_int_vector(ratio, self.dim, "ratio")
        lower = []
        upper = []
        for p, s, o in zip(self.rotation, self.signs, self.offset):
            lo, hi = box.lower[p], box.upper[p]
            if s < 0:
                lo, hi = -hi - 1, -lo - 1
            shift = o * r[p]
            lower.append(lo + shift)
            upper.append(hi + shift)
        return Box(tuple(lower), tuple(upper), box.block_id)

    def inverse(self) -> 'BlockTransformation':
        dim = self.dim
        rotation = [0] * dim
        signs = [1] * dim
        offset = [0] * dim
        for i, (p, s, o) in enumerate(zip(self.rotation, self.signs, self.offset)):
            rotation[p] = i
            signs[p] = s
            # 正向: y = x + o 或 y = -x-1 + o
            offset[p] = -o if s > 0 else o
        return BlockTransformation(tuple(rotation), tuple(signs), tuple(offset))


@dataclass(frozen=True)
class BlockNeighbor:
    """一条有向邻接记录"""
    block_id: BlockId
    transformation: BlockTransformation
    is_singularity: bool = False


# ─────────────────────────────────────────────────────
#  表驱动几何
# ─────────────────────────────────────────────────────

class MultiblockGeometry:
    """表驱动的多 block 几何

    Example:
        >>> geom = MultiblockGeometry(dim=2)
        >>> geom.add_neighbor(0, 1, BlockTransformation.shift((-10, 0)),
        ...                   is_singularity=True)
        >>> geom.get_neighbors(BlockId(0))
        {BlockId(1)}
    """

    def __init__(self, dim: int, block_ids: Iterable[BlockIdLike] = ()) -> None:
        if dim < 1:
            raise ConstructionError(f"dim 必须 >= 1，得到 {dim}")
        self.dim = dim
        self._blocks: Set[BlockId] = set()
        self._neighbors: Dict[BlockId, Dict[BlockId, BlockNeighbor]] = {}
        for bid in block_ids:
            self.add_block(bid)

    @property
    def block_ids(self) -> Set[BlockId]:
        return set(self._blocks)

    @property
    def n_blocks(self) -> int:
        return len(self._blocks)

    def add_block(self, block_id: BlockIdLike) -> BlockId:
        bid = as_block_id(block_id)
        self._blocks.add(bid)
        self._neighbors.setdefault(bid, {})
        return bid

    def add_neighbor(
        self,
        block_a: BlockIdLike,
        block_b: BlockIdLike,
        transformation: Optional[BlockTransformation] = None,
        is_singularity: bool = False,
    ) -> None:
        """登记 a、b 邻接（双向，b→a 使用逆变换）

        Args:
            block_a: 源 block
            block_b: 目标 block
            transformation: a 坐标 → b 坐标的变换，默认恒等
            is_singularity: 邻接是否跨奇异线
        """
        a = self.add_block(block_a)
        b = self.add_block(block_b)
        if a == b:
            raise ConstructionError(f"block 不能与自身相邻: {a}")
        if transformation is None:
            transformation = BlockTransformation.identity(self.dim)
        check_dim(self.dim, transformation.dim, "BlockTransformation")

        self._neighbors[a][b] = BlockNeighbor(b, transformation, is_singularity)
        self._neighbors[b][a] = BlockNeighbor(a, transformation.inverse(), is_singularity)
        logger.debug("登记邻接 %d <-> %d (singularity=%s)", a.value, b.value, is_singularity)

    def get_neighbors(self, block_id: BlockIdLike) -> Set[BlockId]:
        """block 的所有邻居（未登记的 block 返回空集）"""
        return set(self._neighbors.get(as_block_id(block_id), {}))

    def get_singularity_neighbors(self, block_id: BlockIdLike) -> Set[BlockId]:
        bid = as_block_id(block_id)
        return {nb for nb, rec in self._neighbors.get(bid, {}).items() if rec.is_singularity}

    def is_singularity_neighbor(self, block_a: BlockIdLike, block_b: BlockIdLike) -> bool:
        rec = self._neighbors.get(as_block_id(block_a), {}).get(as_block_id(block_b))
        return rec is not None and rec.is_singularity

    def get_transformation(
        self, from_block: BlockIdLike, to_block: BlockIdLike,
    ) -> BlockTransformation:
        a, b = as_block_id(from_block), as_block_id(to_block)
        rec = self._neighbors.get(a, {}).get(b)
        if rec is None:
            raise UsageError(f"block {a.value} 与 {b.value} 未登记邻接")
        return rec.transformation

    def transform(
        self,
        from_block: BlockIdLike,
        to_block: BlockIdLike,
        box: Box,
        ratio: Optional[IntVectorLike] = None,
    ) -> Box:
        """把 from_block 坐标系中的 box 变换到 to_block 坐标系

        Raises:
            UsageError: 两个 block 未登记邻接
            DimensionMismatch: box / ratio 维度与几何不一致
        """
        check_dim(self.dim, box.dim, "变换 box")
        t = self.get_transformation(from_block, to_block)
        return t.apply(box, ratio).with_block(to_block)

    # ── JSON 序列化 ──

    def to_dict(self) -> Dict[str, Any]:
        neighbors = []
        seen = set()
        for a in sorted(self._neighbors):
            for b, rec in sorted(self._neighbors[a].items()):
                if (b, a) in seen:
                    continue
                seen.add((a, b))
                t = rec.transformation
                neighbors.append({
                    'blocks': [a.value, b.value],
                    'singularity': rec.is_singularity,
                    'rotation': list(t.rotation),
                    'signs': list(t.signs),
                    'offset': list(t.offset),
                })
        return {
            'dim': self.dim,
            'blocks': sorted(b.value for b in self._blocks),
            'neighbors': neighbors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MultiblockGeometry':
        """从字典创建（格式见模块文档）"""
        if 'dim' not in data:
            raise ConstructionError('几何描述缺少 "dim" 字段')
        dim = int(data['dim'])
        geom = cls(dim, data.get('blocks', ()))
        for entry in data.get('neighbors', ()):
            a, b = entry['blocks']
            t = BlockTransformation(
                rotation=entry.get('rotation', range(dim)),
                signs=entry.get('signs', (1,) * dim),
                offset=entry.get('offset', (0,) * dim),
            )
            geom.add_neighbor(a, b, t, bool(entry.get('singularity', False)))
        return geom

    def to_json(self, filepath: str | Path) -> str:
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        return str(filepath)

    @classmethod
    def from_json(cls, filepath: str | Path) -> 'MultiblockGeometry':
        filepath = Path(filepath)
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def __repr__(self) -> str:
        n_edges = sum(len(v) for v in self._neighbors.values()) // 2
        return f"MultiblockGeometry(dim={self.dim}, n_blocks={self.n_blocks}, n_neighbors={n_edges})"
