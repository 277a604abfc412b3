"""
boxtree/models.py - 基础数据模型

定义 box 树使用的值类型：BlockId、IntVector、Box、BoxSet，
以及构建参数 BoxTreeConfig。

约定：
- Box 是整数索引、闭区间 [lower_i, upper_i] 的轴对齐超矩形，
  带有其坐标系所属的 BlockId
- Box 为不可变值类型（可哈希、按值比较），空 box 可以表示
  （例如求交结果），但任何建树路径都会拒绝空 box
"""

from __future__ import annotations

import bisect
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np

from .errors import ConstructionError, check_dim


@dataclass(frozen=True, order=True)
class BlockId:
    """block 标识（不透明，可比较，可作字典 key）"""
    value: int

    def __post_init__(self) -> None:
        object.__setattr__(self, 'value', int(self.value))

    def __repr__(self) -> str:
        return f"BlockId({self.value})"


BlockIdLike = Union[BlockId, int]


def as_block_id(block_id: BlockIdLike) -> BlockId:
    """int 或 BlockId 统一转为 BlockId"""
    if isinstance(block_id, BlockId):
        return block_id
    return BlockId(block_id)


@dataclass(frozen=True)
class IntVector:
    """定长整数向量，用作细化比或 stencil 宽度

    Example:
        >>> r = IntVector((2, 4))
        >>> r.dim, r[1]
        (2, 4)
    """
    values: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, 'values', tuple(int(v) for v in self.values))

    @classmethod
    def ones(cls, dim: int) -> 'IntVector':
        return cls((1,) * dim)

    @classmethod
    def uniform(cls, dim: int, value: int) -> 'IntVector':
        return cls((value,) * dim)

    @property
    def dim(self) -> int:
        return len(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[int]:
        return iter(self.values)

    def __getitem__(self, i: int) -> int:
        return self.values[i]

    def __mul__(self, other: 'IntVector') -> 'IntVector':
        check_dim(self.dim, other.dim, "IntVector")
        return IntVector(tuple(a * b for a, b in zip(self.values, other.values)))

    def min(self) -> int:
        return min(self.values)

    def is_ones(self) -> bool:
        return all(v == 1 for v in self.values)

    def as_array(self) -> np.ndarray:
        return np.array(self.values, dtype=np.int64)

    def __repr__(self) -> str:
        return f"IntVector{self.values}"


IntVectorLike = Union[IntVector, int, Sequence[int]]


def as_int_vector(value: IntVectorLike, dim: int, what: str = "IntVector") -> IntVector:
    """标量（各维相同）/ 序列 / IntVector 统一转为 dim 维 IntVector

    Raises:
        DimensionMismatch: 序列长度与 dim 不一致
    """
    if isinstance(value, (int, np.integer)):
        return IntVector.uniform(dim, int(value))
    vec = value if isinstance(value, IntVector) else IntVector(tuple(value))
    check_dim(dim, vec.dim, what)
    return vec


@dataclass(frozen=True)
class Box:
    """整数索引的轴对齐 box

    Attributes:
        lower: 各维下界（含）
        upper: 各维上界（含）
        block_id: box 坐标所在的 block
    """
    lower: Tuple[int, ...]
    upper: Tuple[int, ...]
    block_id: BlockId = field(default=BlockId(0))

    def __post_init__(self) -> None:
        object.__setattr__(self, 'lower', tuple(int(v) for v in self.lower))
        object.__setattr__(self, 'upper', tuple(int(v) for v in self.upper))
        object.__setattr__(self, 'block_id', as_block_id(self.block_id))
        check_dim(len(self.lower), len(self.upper), "Box.upper")

    @property
    def dim(self) -> int:
        return len(self.lower)

    @property
    def is_empty(self) -> bool:
        return any(lo > hi for lo, hi in zip(self.lower, self.upper))

    @property
    def shape(self) -> Tuple[int, ...]:
        """各维 cell 数（空 box 的维度为 0）"""
        return tuple(max(hi - lo + 1, 0) for lo, hi in zip(self.lower, self.upper))

    @property
    def size(self) -> int:
        """cell 总数"""
        n = 1
        for s in self.shape:
            n *= s
        return n

    @property
    def center(self) -> np.ndarray:
        """box 中心（浮点）"""
        return (np.array(self.lower, dtype=np.float64)
                + np.array(self.upper, dtype=np.float64)) / 2.0

    @property
    def sort_key(self) -> Tuple[BlockId, Tuple[int, ...], Tuple[int, ...]]:
        """规范排序：先 BlockId，再下角点、上角点字典序"""
        return (self.block_id, self.lower, self.upper)

    def intersects(self, other: 'Box') -> bool:
        """逐维闭区间相交测试（不比较 BlockId，空 box 不与任何 box 相交）"""
        check_dim(self.dim, other.dim, "Box")
        if self.is_empty or other.is_empty:
            return False
        for lo1, hi1, lo2, hi2 in zip(self.lower, self.upper, other.lower, other.upper):
            if hi1 < lo2 or hi2 < lo1:
                return False
        return True

    def intersection(self, other: 'Box') -> 'Box':
        """交集（可能为空），BlockId 取 self 的"""
        check_dim(self.dim, other.dim, "Box")
        return Box(
            tuple(max(a, b) for a, b in zip(self.lower, other.lower)),
            tuple(min(a, b) for a, b in zip(self.upper, other.upper)),
            self.block_id,
        )

    def contains(self, other: 'Box') -> bool:
        """other 是否完全位于 self 内"""
        check_dim(self.dim, other.dim, "Box")
        if other.is_empty:
            return True
        return (all(a <= b for a, b in zip(self.lower, other.lower))
                and all(a >= b for a, b in zip(self.upper, other.upper)))

    def refine(self, ratio: IntVectorLike) -> 'Box':
        """[lower, upper] → [lower*r, (upper+1)*r - 1]"""
        r = as_int_vector(ratio, self.dim, "refine ratio")
        return Box(
            tuple(lo * k for lo, k in zip(self.lower, r)),
            tuple((hi + 1) * k - 1 for hi, k in zip(self.upper, r)),
            self.block_id,
        )

    def coarsen(self, ratio: IntVectorLike) -> 'Box':
        """向下取整粗化：覆盖原 box 的最小粗 box"""
        r = as_int_vector(ratio, self.dim, "coarsen ratio")
        return Box(
            tuple(lo // k for lo, k in zip(self.lower, r)),
            tuple(hi // k for hi, k in zip(self.upper, r)),
            self.block_id,
        )

    def grow(self, width: IntVectorLike) -> 'Box':
        """各维两侧扩张 width 个 cell（stencil 宽度）"""
        w = as_int_vector(width, self.dim, "grow width")
        return Box(
            tuple(lo - k for lo, k in zip(self.lower, w)),
            tuple(hi + k for hi, k in zip(self.upper, w)),
            self.block_id,
        )

    def with_block(self, block_id: BlockIdLike) -> 'Box':
        return Box(self.lower, self.upper, as_block_id(block_id))

    def __repr__(self) -> str:
        return f"Box({list(self.lower)}-{list(self.upper)}, block={self.block_id.value})"


def bounding_box(boxes: Iterable[Box]) -> Box:
    """一组非空 box 的包围盒（BlockId 取第一个）"""
    it = iter(boxes)
    first = next(it)
    lo = list(first.lower)
    hi = list(first.upper)
    for b in it:
        for d in range(first.dim):
            if b.lower[d] < lo[d]:
                lo[d] = b.lower[d]
            if b.upper[d] > hi[d]:
                hi[d] = b.upper[d]
    return Box(tuple(lo), tuple(hi), first.block_id)


class BoxSet:
    """有序去重的 box 集合

    按 Box.sort_key（BlockId，下角点，上角点）排序，
    用作 find_overlap_boxes 的「排序唯一集合」结果形式。
    """

    def __init__(self, boxes: Iterable[Box] = ()) -> None:
        self._boxes: List[Box] = []
        self._members: set = set()
        self.update(boxes)

    def add(self, box: Box) -> bool:
        """插入 box，返回是否为新元素"""
        if box in self._members:
            return False
        self._members.add(box)
        bisect.insort(self._boxes, box, key=_sort_key)
        return True

    def update(self, boxes: Iterable[Box]) -> None:
        for b in boxes:
            self.add(b)

    def clear(self) -> None:
        self._boxes.clear()
        self._members.clear()

    def to_list(self) -> List[Box]:
        return list(self._boxes)

    def __contains__(self, box: object) -> bool:
        return box in self._members

    def __len__(self) -> int:
        return len(self._boxes)

    def __iter__(self) -> Iterator[Box]:
        return iter(self._boxes)

    def __getitem__(self, i: int) -> Box:
        return self._boxes[i]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, BoxSet):
            return self._boxes == other._boxes
        return NotImplemented

    def __repr__(self) -> str:
        return f"BoxSet({self._boxes!r})"


def _sort_key(box: Box):
    return box.sort_key


@dataclass
class BoxTreeConfig:
    """box 树构建 / 查询参数

    Attributes:
        min_number: 叶节点 box 数阈值，box 数超过该值才继续切分。
            较大时建树更快、查询更慢，反之亦然（只影响性能）
        include_singularity_neighbors: 查询时默认是否包含奇异邻居 block
    """
    min_number: int = 10
    include_singularity_neighbors: bool = False

    def __post_init__(self) -> None:
        if self.min_number < 1:
            raise ConstructionError(f"min_number 必须 >= 1，得到 {self.min_number}")

    # ── JSON 序列化 ──

    def to_dict(self) -> Dict[str, Any]:
        """转为字典"""
        from dataclasses import fields as dc_fields
        return {f.name: getattr(self, f.name) for f in dc_fields(self)}

    def to_json(self, filepath: str | Path) -> str:
        """保存到 JSON 文件，返回保存路径"""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        return str(filepath)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BoxTreeConfig':
        """从字典创建（忽略未知字段，缺失字段用默认值）"""
        from dataclasses import fields as dc_fields
        valid_fields = {f.name for f in dc_fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    @classmethod
    def from_json(cls, filepath: str | Path) -> 'BoxTreeConfig':
        filepath = Path(filepath)
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)
