"""
boxtree/errors.py - 错误类型

所有错误都是调用方的编程错误（前置条件不满足），不是瞬时故障，
因此没有重试逻辑。每个操作在产生任何可观察的修改之前完成校验。
"""


class BoxTreeError(Exception):
    """boxtree 所有错误的基类"""


class ConstructionError(BoxTreeError, ValueError):
    """构建阶段的输入错误

    空 box、单 block 树中 BlockId 不一致、min_number 或细化比无效。
    """


class UsageError(BoxTreeError, RuntimeError):
    """调用时机 / 调用参数错误

    未初始化的树上查询、请求不存在的 block、未登记的 block 邻接、
    不可换算的细化比。
    """


class DimensionMismatch(BoxTreeError, ValueError):
    """box / 比率 / 几何对象的维度与树的固定维度不一致"""


def check_dim(expected: int, actual: int, what: str) -> None:
    """维度检查，不一致时抛出 DimensionMismatch"""
    if expected != actual:
        raise DimensionMismatch(
            f"{what} 维度为 {actual}，期望 {expected}")
