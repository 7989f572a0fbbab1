# Copyright 2025 msq
"""避难所推荐引擎的异常体系。

几何/坐标类错误在批量场景下按条目跳过；只有整体输入无效
（半径非法、无可用避难所）才会向调用方抛出。
"""

from __future__ import annotations


class ShelterEngineError(Exception):
    """引擎异常基类。"""


class InvalidCoordinate(ShelterEngineError, ValueError):
    """经纬度越界或非有限数值。"""

    def __init__(self, message: str, *, latitude: object = None, longitude: object = None) -> None:
        super().__init__(message)
        self.latitude = latitude
        self.longitude = longitude


class DegenerateGeometry(ShelterEngineError, ValueError):
    """多边形可用点数不足，无法计算质心或外包框。"""

    def __init__(self, message: str, *, valid_points: int = 0) -> None:
        super().__init__(message)
        self.valid_points = valid_points


class InvalidParameter(ShelterEngineError, ValueError):
    """调用参数非法（例如非正的搜索半径）。"""


class NoValidShelters(ShelterEngineError):
    """输入中没有任何通过基础校验的避难所。"""

    def __init__(self, total: int) -> None:
        super().__init__(f"no valid shelters among {total} candidates")
        self.total = total


class RankingUnavailable(ShelterEngineError, RuntimeError):
    """外部排序不可用：调用失败、超时或返回内容无法使用。

    仅在编排器内部流转，最终由确定性评分兜底，不会抛给调用方。
    """

    def __init__(self, reason: str, detail: str | None = None) -> None:
        message = reason if not detail else f"{reason}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail
