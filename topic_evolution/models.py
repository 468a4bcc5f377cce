"""
话题演化数据模型
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import NewType, Optional, Union


TopicKey = NewType("TopicKey", str)
"""规范化后的话题键（去空白 + 小写），只能由 normalize_topic 产生"""


def normalize_topic(topic: Optional[str]) -> Optional[TopicKey]:
  """
  规范化话题字符串

  Args:
    topic: 原始话题

  Returns:
    TopicKey，空话题返回 None
  """
  if not topic:
    return None
  key = str(topic).strip().lower()
  if not key:
    return None
  return TopicKey(key)


class Phase(str, Enum):
  """话题讨论阶段"""
  SPECULATION = "speculation"
  ANNOUNCEMENT = "announcement"
  ANALYSIS = "analysis"
  ADOPTION = "adoption"
  BACKLASH = "backlash"
  GENERAL = "general"


class Trend(str, Enum):
  """趋势方向"""
  RISING = "rising"
  DECLINING = "declining"
  STABLE = "stable"


class StepSource(str, Enum):
  """故事线历史条目来源"""
  RULE = "rule"
  MODEL = "model"
  CREATION = "creation"


# 摘要优先级序数
PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3}


# ============================================================
# 话题簇
# ============================================================

@dataclass(frozen=True)
class ClusterEntry:
  """
  话题簇时间线条目

  Attributes:
    subtopic: 子话题标签（角度）
    phase: 该帖子所处的讨论阶段
    timestamp: 观测时间
    snippet: 内容片段（≤200 字符）
  """
  subtopic: str
  phase: Phase
  timestamp: datetime
  snippet: str = ""


@dataclass
class TopicCluster:
  """
  单个话题的角度时间线

  timeline 为有界 deque，超出上限时最旧条目先被挤出。
  """
  topic: TopicKey
  timeline: deque
  subtopics: set[str] = field(default_factory=set)
  current_phase: Phase = Phase.GENERAL
  last_mentions: dict[str, datetime] = field(default_factory=dict)

  @property
  def is_empty(self) -> bool:
    return not self.timeline


@dataclass(frozen=True)
class EvolutionAnalysis:
  """
  单条帖子的演化分析结果

  Attributes:
    subtopic: 子话题标签
    is_novel_angle: 是否为新角度
    is_phase_change: 是否发生阶段切换
    phase: 当前阶段
    evolution_score: 演化分 0~1
    signals: 人类可读的信号列表
  """
  subtopic: str
  is_novel_angle: bool
  is_phase_change: bool
  phase: Phase
  evolution_score: float
  signals: tuple[str, ...] = ()

  @classmethod
  def default(cls, topic: str) -> "EvolutionAnalysis":
    """无法分析时的默认结果"""
    return cls(
      subtopic=f"{topic} discussion",
      is_novel_angle=False,
      is_phase_change=False,
      phase=Phase.GENERAL,
      evolution_score=0.0,
    )


@dataclass(frozen=True)
class PhaseChange:
  """阶段检测结果"""
  phase: Phase
  is_change: bool


@dataclass(frozen=True)
class TopicDataPoint:
  """话题在某个时间点的提及数"""
  timestamp: datetime
  mentions: int


@dataclass(frozen=True)
class TopicEvolution:
  """
  话题在时间窗口内的演化概览

  Attributes:
    topic: 话题键
    data_points: 窗口内的历史数据点
    trend: 趋势方向
    subtopics: 窗口内子话题分布 [(subtopic, count)]，按频次降序，最多 10 个
    subtopic_count: 话题簇的子话题总数
    current_phase: 当前阶段
    summary: 简要描述
  """
  topic: str
  data_points: tuple[TopicDataPoint, ...] = ()
  trend: Trend = Trend.STABLE
  subtopics: tuple[tuple[str, int], ...] = ()
  subtopic_count: int = 0
  current_phase: Optional[Phase] = None
  summary: str = ""


@dataclass(frozen=True)
class TopicRecency:
  """话题在最近摘要中的出现情况"""
  mentions: int
  last_seen: Optional[datetime] = None


# ============================================================
# 故事线
# ============================================================

@dataclass(frozen=True)
class StorylineStep:
  """故事线历史条目（一次阶段更新）"""
  phase: str
  confidence: float
  source: StepSource
  timestamp: datetime
  rationale: str = ""


@dataclass
class Storyline:
  """
  被追踪的叙事弧线

  Attributes:
    id: "{topic}_{毫秒时间戳}_{6 位随机后缀}"
    topic: 话题键
    current_phase: 当前阶段（progression pattern 中的阶段名或 "emergence"）
    confidence: 置信度 0~1，只增不减
    history: 有界阶段历史
    created_at: 创建时间
    last_updated: 最后更新时间
  """
  id: str
  topic: TopicKey
  current_phase: str
  confidence: float
  history: deque
  created_at: datetime
  last_updated: datetime


@dataclass
class LearnedPattern:
  """从模型理由中学到的话题专属关键词模式"""
  phase: str
  keywords: list[str]
  confidence: float
  last_seen: datetime


@dataclass
class TopicModel:
  """
  话题学习模型

  长期不活跃时置信度按因子衰减，低于下限时删除。
  """
  patterns: list[LearnedPattern] = field(default_factory=list)
  confidence: float = 0.5
  last_updated: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StorylineEvent:
  """
  故事线分析事件

  Attributes:
    type: "progression" / "emergence" / "unknown"
    topic: 话题键
    phase: 检测到的阶段
    confidence: 置信度
    source: 判定来源（rule / model / heuristic）
    storyline_id: 受影响的故事线 ID，未变更时为 None
    pattern: 匹配到的模式名
    rationale: 判定说明
  """
  type: str
  topic: str
  phase: Optional[str] = None
  confidence: float = 0.0
  source: str = ""
  storyline_id: Optional[str] = None
  pattern: Optional[str] = None
  rationale: str = ""

  @classmethod
  def unknown(cls, topic: str) -> "StorylineEvent":
    return cls(type="unknown", topic=topic)


# 分类器返回的故事线判定（严格和类型）

@dataclass(frozen=True)
class ProgressionVerdict:
  phase: str
  confidence: float
  rationale: str = ""
  pattern: str = ""


@dataclass(frozen=True)
class EmergenceVerdict:
  phase: str
  confidence: float
  rationale: str = ""
  pattern: str = ""


@dataclass(frozen=True)
class UnknownVerdict:
  confidence: float = 0.0
  rationale: str = ""


@dataclass(frozen=True)
class InvalidVerdict:
  reason: str


StorylineVerdict = Union[
  ProgressionVerdict, EmergenceVerdict, UnknownVerdict, InvalidVerdict,
]


# ============================================================
# 观察列表
# ============================================================

@dataclass(frozen=True)
class WatchlistItem:
  """
  观察列表条目

  Attributes:
    item: 规范化后的短语
    added_at: 加入时间
    source: 来源（如 "digest"）
    digest_id: 来源摘要 ID（仅用于查找）
  """
  item: str
  added_at: datetime
  source: str = "digest"
  digest_id: Optional[str] = None


@dataclass(frozen=True)
class WatchlistMatch:
  """观察列表命中结果"""
  matches: tuple[str, ...]
  boost_score: float
  reason: str


# ============================================================
# 摘要（lore）与历史叙事
# ============================================================

@dataclass(frozen=True)
class NarrativeDigest:
  """
  外部产生的周期性叙事摘要

  Attributes:
    headline: 标题
    tags: 话题标签
    priority: low / medium / high
    narrative: 叙事正文
    insights: 要点列表
    watchlist: 预测的后续关注项
    tone: 语气描述
    timestamp: 产生时间
    id: 摘要 ID
  """
  headline: str = ""
  tags: tuple[str, ...] = ()
  priority: str = "medium"
  narrative: str = ""
  insights: tuple[str, ...] = ()
  watchlist: tuple[str, ...] = ()
  tone: str = ""
  timestamp: datetime = field(default_factory=datetime.now)
  id: Optional[str] = None


@dataclass(frozen=True)
class HistoricalNarrative:
  """
  时段聚合叙事（hourly / daily / weekly）

  Attributes:
    period: "hourly" / "daily" / "weekly"
    timestamp: 时段时间
    event_count: 事件数
    user_count: 用户数
    top_topics: 话题 → 计数
    sentiment: 情感桶 → 计数（positive / negative / neutral）
    summary: 摘要文本
    key_moments: 关键时刻
  """
  period: str
  timestamp: datetime
  event_count: int = 0
  user_count: int = 0
  top_topics: dict[str, int] = field(default_factory=dict)
  sentiment: dict[str, float] = field(default_factory=dict)
  summary: str = ""
  key_moments: tuple[str, ...] = ()


# ============================================================
# 连续性与趋势
# ============================================================

@dataclass(frozen=True)
class ContinuityReport:
  """跨摘要连续性分析结果"""
  recurring_themes: tuple[str, ...]
  priority_trend: str
  watchlist_follow_up: tuple[str, ...]
  tone_progression: Optional[tuple[str, str]]
  emerging_threads: tuple[str, ...]
  cooling_threads: tuple[str, ...]
  summary: str
  digests_analyzed: int = 0


@dataclass(frozen=True)
class StorylineAdvancement:
  """帖子对近期故事线的推进情况"""
  advances_recurring_theme: bool
  watchlist_matches: tuple[str, ...]
  is_emerging_thread: bool

  @property
  def any(self) -> bool:
    return (
      self.advances_recurring_theme
      or bool(self.watchlist_matches)
      or self.is_emerging_thread
    )


@dataclass(frozen=True)
class TrendDelta:
  """单项指标相对历史均值的变化"""
  direction: str
  change: float
  current: float
  average: float


@dataclass(frozen=True)
class TopicChanges:
  """当前与历史 top 话题的集合差"""
  emerging: tuple[str, ...] = ()
  declining: tuple[str, ...] = ()
  stable: tuple[str, ...] = ()


@dataclass(frozen=True)
class HistoryComparison:
  """与历史叙事的对比结果"""
  period: str
  event_trend: Optional[TrendDelta] = None
  user_trend: Optional[TrendDelta] = None
  topic_changes: TopicChanges = field(default_factory=TopicChanges)
  sentiment_shift: dict[str, float] = field(default_factory=dict)
  emerging_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class SimilarMoment:
  """与当前摘要相似的历史时刻"""
  narrative: HistoricalNarrative
  similarity: float
