"""
话题演化配置
所有可调参数汇总在此
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from .settings import Settings


@dataclass(frozen=True)
class ClusterConfig:
  """话题簇配置"""

  max_entries: int = 500
  """每个话题时间线的最大条目数"""

  snippet_length: int = 200
  """时间线中保存的内容片段长度"""

  top_subtopics: int = 10
  """演化概览中列出的子话题数"""


@dataclass(frozen=True)
class PhaseConfig:
  """阶段分类器配置"""

  model_enabled: bool = True
  """是否调用模型生成子话题标签"""

  model_timeout_seconds: float = 5.0
  """模型调用超时"""

  model_max_tokens: int = 20
  model_temperature: float = 0.3

  label_cache_ttl_seconds: float = 3600.0
  """子话题标签缓存时长"""

  label_cache_max: int = 500
  """标签缓存最大条目数"""

  content_prefix_length: int = 200
  """缓存键取内容前多少字符"""

  max_label_length: int = 50

  phase_min_timeline: int = 5
  """时间线至少有这么多条才报告阶段切换"""

  phase_window: int = 10
  """阶段推断所看的最近条目数"""

  diversity_window: int = 10
  diversity_target: int = 5
  """最近窗口内达到此数量的不同子话题即满分"""

  recency_window: int = 3
  recency_bonus: float = 0.2

  revisit_hours: float = 24.0
  """同一子话题间隔超过此时长再出现视为新角度"""

  similarity_threshold: float = 0.5
  """子话题词集 Jaccard 相似度超过此值视为同一角度"""


@dataclass(frozen=True)
class StorylineConfig:
  """故事线追踪配置"""

  model_enabled: bool = True
  rule_threshold: float = 0.5
  """规则置信度达到此值直接判定为推进"""

  novelty_threshold: float = 0.7
  """启发式新兴判定阈值"""

  max_per_topic: int = 5
  ttl_days: float = 7.0
  """超过此天数未更新的故事线被清理"""

  history_limit: int = 50

  rate_limit_per_hour: int = 10
  cache_ttl_hours: float = 24.0
  model_max_tokens: int = 200
  model_temperature: float = 0.1
  model_timeout_seconds: float = 10.0

  topic_model_boost: float = 0.2
  """规则置信度叠加话题模型置信度的系数"""

  learned_confidence_factor: float = 0.8
  """模型判定置信度写回话题模型时的折扣"""

  model_decay_days: float = 30.0
  model_decay_factor: float = 0.9
  model_confidence_floor: float = 0.1

  emergence_divisor: int = 3


@dataclass(frozen=True)
class WatchlistConfig:
  """观察列表配置"""

  ttl_hours: float = 24.0
  min_length: int = 3
  boost_per_match: float = 0.2
  max_boost: float = 0.5


@dataclass(frozen=True)
class ContinuityConfig:
  """连续性分析配置"""

  lookback: int = 3
  """分析最近多少条摘要"""


@dataclass(frozen=True)
class FreshnessConfig:
  """新鲜度惩罚配置"""

  enabled: bool = True
  lookback_hours: float = 24.0
  lookback_digests: int = 3
  mentions_full_intensity: int = 5
  max_penalty: float = 0.4
  similarity_bump: float = 0.05
  novelty_reduction: float = 0.5
  advancement_reduction: float = 0.1


@dataclass(frozen=True)
class TrendConfig:
  """历史趋势配置"""

  max_hourly: int = 168
  max_daily: int = 90
  max_weekly: int = 52
  trend_threshold: float = 10.0
  """事件 / 用户变化超过此百分比判定为 up / down"""

  sentiment_threshold: float = 15.0
  spike_threshold: float = 50.0
  explosion_threshold: int = 3
  top_topics: int = 10
  weekly_min_dailies: int = 5
  similarity_threshold: float = 0.3


@dataclass(frozen=True)
class EvolutionConfig:
  """话题演化引擎总配置"""

  enabled: bool = True
  cluster: ClusterConfig = field(default_factory=ClusterConfig)
  phase: PhaseConfig = field(default_factory=PhaseConfig)
  storyline: StorylineConfig = field(default_factory=StorylineConfig)
  watchlist: WatchlistConfig = field(default_factory=WatchlistConfig)
  continuity: ContinuityConfig = field(default_factory=ContinuityConfig)
  freshness: FreshnessConfig = field(default_factory=FreshnessConfig)
  trends: TrendConfig = field(default_factory=TrendConfig)

  max_digests: int = 120
  """叙事摘要滚动缓冲上限"""

  maintenance_interval_seconds: float = 600.0
  """后台维护循环间隔"""

  @classmethod
  def from_settings(cls, settings: "Settings") -> "EvolutionConfig":
    """
    从命名配置项构建

    缺失或格式错误的配置项使用默认值。

    Args:
      settings: 配置读取器

    Returns:
      EvolutionConfig
    """
    s = settings
    cluster = ClusterConfig(
      max_entries=s.get_int("TOPIC_CLUSTER_MAX_ENTRIES", ClusterConfig.max_entries),
    )
    phase = PhaseConfig(
      model_enabled=s.get_bool("TOPIC_EVOLUTION_LLM_ENABLED", PhaseConfig.model_enabled),
      label_cache_ttl_seconds=s.get_float(
        "TOPIC_CACHE_TTL_MS", PhaseConfig.label_cache_ttl_seconds * 1000,
      ) / 1000,
      label_cache_max=s.get_int("TOPIC_CACHE_MAX_SIZE", PhaseConfig.label_cache_max),
      phase_min_timeline=s.get_int("TOPIC_PHASE_MIN_TIMELINE", PhaseConfig.phase_min_timeline),
    )
    storyline = StorylineConfig(
      model_enabled=s.get_bool(
        "NOSTR_STORYLINE_LLM_ENABLED",
        s.get_bool("NARRATIVE_LLM_ENABLE", StorylineConfig.model_enabled),
      ),
      rule_threshold=s.get_float(
        "NOSTR_STORYLINE_CONFIDENCE_THRESHOLD", StorylineConfig.rule_threshold,
      ),
      cache_ttl_hours=s.get_float(
        "NOSTR_STORYLINE_CACHE_TTL_MINUTES", StorylineConfig.cache_ttl_hours * 60,
      ) / 60,
      rate_limit_per_hour=s.get_int(
        "NOSTR_STORYLINE_RATE_LIMIT", StorylineConfig.rate_limit_per_hour,
      ),
      max_per_topic=s.get_int("NOSTR_STORYLINE_MAX_PER_TOPIC", StorylineConfig.max_per_topic),
    )
    watchlist = WatchlistConfig(
      ttl_hours=s.get_float("WATCHLIST_TTL_HOURS", WatchlistConfig.ttl_hours),
    )
    freshness = FreshnessConfig(
      enabled=s.get_bool("NOSTR_FRESHNESS_DECAY_ENABLE", FreshnessConfig.enabled),
      lookback_hours=s.get_float(
        "NOSTR_FRESHNESS_LOOKBACK_HOURS", FreshnessConfig.lookback_hours,
      ),
      lookback_digests=s.get_int(
        "NOSTR_FRESHNESS_LOOKBACK_DIGESTS", FreshnessConfig.lookback_digests,
      ),
      mentions_full_intensity=s.get_int(
        "NOSTR_FRESHNESS_MENTIONS_FULL_INTENSITY", FreshnessConfig.mentions_full_intensity,
      ),
      max_penalty=s.get_float("NOSTR_FRESHNESS_MAX_PENALTY", FreshnessConfig.max_penalty),
      similarity_bump=s.get_float(
        "NOSTR_FRESHNESS_SIMILARITY_BUMP", FreshnessConfig.similarity_bump,
      ),
      novelty_reduction=s.get_float(
        "NOSTR_FRESHNESS_NOVELTY_REDUCTION", FreshnessConfig.novelty_reduction,
      ),
    )
    return cls(
      enabled=s.get_bool("TOPIC_EVOLUTION_ENABLED", True),
      cluster=cluster,
      phase=phase,
      storyline=storyline,
      watchlist=watchlist,
      freshness=freshness,
      max_digests=s.get_int("NARRATIVE_MAX_DIGESTS", cls.max_digests),
    )
