"""健康数据协作方的边界模型。

健康记录的持久化、查询与检索不属于本包，这里只定义：

- 三种记录变体 MealRecord / LabResultRecord / SymptomRecord（tagged union），
  ContextAssembler 按变体做穷举匹配，而不是探测字段是否存在。
- HealthContextProvider 协议：每个类别返回最近 N 条记录（最新在前）。
- ContextBlock：渲染后的上下文块，只在单次 send_message 内存在，不做缓存。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol, Union


HealthCategory = Literal["meal", "labResult", "symptom"]

CATEGORIES: tuple = ("meal", "labResult", "symptom")

MealType = Literal["breakfast", "lunch", "dinner", "snack"]
SymptomSeverity = Literal["mild", "moderate", "severe"]


@dataclass
class MealRecord:
    description: str
    meal_type: MealType
    recorded_at: datetime
    kind: Literal["meal"] = "meal"


@dataclass
class LabResultRecord:
    test_type: str
    recorded_at: datetime
    results: Dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    test_date: Optional[datetime] = None
    kind: Literal["labResult"] = "labResult"


@dataclass
class SymptomRecord:
    description: str
    severity: SymptomSeverity
    recorded_at: datetime
    duration: str = ""
    kind: Literal["symptom"] = "symptom"


HealthRecord = Union[MealRecord, LabResultRecord, SymptomRecord]


class HealthContextProvider(Protocol):
    """健康数据协作方协议。

    get_recent 按类别返回最近的记录，最新在前。实现方可以返回多于 limit 的条数，
    ContextAssembler 会再截断一次。
    """

    def get_recent(self, user_id: str, category: HealthCategory, limit: int) -> List[HealthRecord]:
        ...


class NullHealthContextProvider:
    """没有接入健康数据时使用的空实现。"""

    def get_recent(self, user_id: str, category: HealthCategory, limit: int) -> List[HealthRecord]:
        return []


@dataclass
class ContextBlock:
    """ContextAssembler 的输出。

    - recent_meals / recent_lab_results / recent_symptoms: 截断后的记录（最新在前）。
    - text: 渲染好的可读文本；没有任何记录时为空字符串。
    - degraded: 协作方失败、上下文被降级为空时为 True。
    """

    recent_meals: List[MealRecord] = field(default_factory=list)
    recent_lab_results: List[LabResultRecord] = field(default_factory=list)
    recent_symptoms: List[SymptomRecord] = field(default_factory=list)
    text: str = ""
    degraded: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.text
