"""
话题演化引擎编排器
统一管理话题簇、阶段分类、故事线、观察列表、摘要缓冲与历史趋势
"""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, Optional, Union

from langchain_core.language_models import BaseChatModel

from .clusters import TopicClusterStore
from .collaborators import LangChainClassifier, NullClassifier, TextClassifier
from .config import EvolutionConfig
from .continuity import analyze_continuity, check_storyline_advancement
from .digests import DigestBuffer, digest_from_dict
from .formatter import format_continuity, format_evolution, format_watchlist
from .freshness import FreshnessScorer
from .models import (
  ContinuityReport, EvolutionAnalysis, HistoricalNarrative, HistoryComparison,
  NarrativeDigest, SimilarMoment, StorylineAdvancement, StorylineEvent,
  TopicEvolution, TopicKey, TopicRecency, WatchlistMatch, normalize_topic,
)
from .persistence import NullPersistence, Persistence
from .phase_classifier import PhaseClassifier
from .settings import Settings
from .storyline import StorylineTracker
from .trends import TrendAggregator
from .ttl import Clock
from .watchlist import WatchlistMonitor

logger = logging.getLogger(__name__)


class TopicEvolutionEngine:
  """
  话题演化引擎

  职责：
  - 每条 (topic, content) 更新话题簇与故事线（同一话题串行）
  - 存储外部叙事摘要并抽取观察项
  - 为外部排序阶段提供新鲜度惩罚、故事线推进、观察列表命中
  - 后台维护循环（模型衰减、缓存与过期条目清理）
  """

  def __init__(
    self,
    classifier: Optional[TextClassifier] = None,
    persistence: Optional[Persistence] = None,
    config: Optional[EvolutionConfig] = None,
    model: Optional[BaseChatModel] = None,
    clock: Clock = datetime.now,
  ):
    """
    初始化引擎

    Args:
      classifier: 文本分类协作者，None 且未给 model 时只用启发式
      persistence: 持久化协作者，None 时不落盘
      config: 配置
      model: LangChain 聊天模型（会包装成分类器）
      clock: 时钟函数
    """
    self._config = config or EvolutionConfig()
    self._clock = clock

    if classifier is None and model is not None:
      classifier = LangChainClassifier(
        model=model, timeout_seconds=self._config.storyline.model_timeout_seconds,
      )
    self._classifier: TextClassifier = classifier or NullClassifier()
    self._persistence: Persistence = persistence or NullPersistence()

    self._clusters = TopicClusterStore(self._config.cluster)
    self._phase = PhaseClassifier(self._classifier, self._config.phase, clock)
    self._storylines = StorylineTracker(self._classifier, self._config.storyline, clock)
    self._watchlist = WatchlistMonitor(self._config.watchlist, clock)
    self._digests = DigestBuffer(self._config.max_digests, clock)
    self._trends = TrendAggregator(self._config.trends, self._persistence, clock)
    self._freshness = FreshnessScorer(self._digests, self._config.freshness, clock)

    # 每个话题一把锁：读-改-写话题簇 / 故事线期间不允许同话题交错
    self._topic_locks: dict[TopicKey, asyncio.Lock] = {}

    self._maintenance_task: Optional[asyncio.Task] = None
    self._stop_event: Optional[asyncio.Event] = None
    self._running = False

  @classmethod
  def from_settings(
    cls,
    settings: Optional[Settings] = None,
    persistence: Optional[Persistence] = None,
  ) -> "TopicEvolutionEngine":
    """
    按命名配置构建引擎

    NARRATIVE_LLM_ENABLE 打开时用 ModelProvider.classifier 延迟构建分类模型，
    提供商由 NOSTR_STORYLINE_LLM_PROVIDER 指定，模型名由 NARRATIVE_LLM_MODEL 指定。
    """
    settings = settings or Settings()
    config = EvolutionConfig.from_settings(settings)

    classifier: Optional[TextClassifier] = None
    if settings.get_bool("NARRATIVE_LLM_ENABLE", False):
      provider = settings.get_str("NOSTR_STORYLINE_LLM_PROVIDER", "openai")
      model_name = settings.get("NARRATIVE_LLM_MODEL")

      def factory() -> BaseChatModel:
        from langchain_wrapper import ModelProvider, ModelType
        return ModelProvider.classifier(
          ModelType(provider.strip().lower()), model_name=model_name,
        )

      classifier = LangChainClassifier(
        factory=factory, timeout_seconds=config.storyline.model_timeout_seconds,
      )

    return cls(classifier=classifier, persistence=persistence, config=config)

  # ============================================================
  # 只读访问
  # ============================================================

  @property
  def config(self) -> EvolutionConfig:
    return self._config

  @property
  def clusters(self) -> TopicClusterStore:
    return self._clusters

  @property
  def storylines(self) -> StorylineTracker:
    return self._storylines

  @property
  def watchlist(self) -> WatchlistMonitor:
    return self._watchlist

  @property
  def digests(self) -> DigestBuffer:
    return self._digests

  @property
  def trends(self) -> TrendAggregator:
    return self._trends

  def _lock(self, topic: TopicKey) -> asyncio.Lock:
    lock = self._topic_locks.get(topic)
    if lock is None:
      lock = asyncio.Lock()
      self._topic_locks[topic] = lock
    return lock

  # ============================================================
  # 生命周期
  # ============================================================

  async def start(self) -> None:
    """启动后台维护循环"""
    if self._running:
      return
    self._running = True
    self._stop_event = asyncio.Event()
    self._maintenance_task = asyncio.create_task(self._maintenance_loop())
    logger.info("话题演化引擎已启动 (维护间隔 %.0fs)", self._config.maintenance_interval_seconds)

  async def stop(self) -> None:
    """停止后台维护循环"""
    self._running = False
    if self._stop_event is not None:
      self._stop_event.set()

    if self._maintenance_task is not None:
      self._maintenance_task.cancel()
      try:
        await self._maintenance_task
      except asyncio.CancelledError:
        pass
      self._maintenance_task = None

    logger.info("话题演化引擎已停止")

  async def _maintenance_loop(self) -> None:
    """周期维护循环"""
    while self._running:
      try:
        try:
          await asyncio.wait_for(
            self._stop_event.wait(),
            timeout=self._config.maintenance_interval_seconds,
          )
        except asyncio.TimeoutError:
          pass

        if not self._running:
          break
        self.run_maintenance()

      except asyncio.CancelledError:
        break
      except Exception:
        logger.exception("话题演化维护循环错误")
        await asyncio.sleep(1)

  def run_maintenance(self) -> dict:
    """
    执行一次维护

    Returns:
      各项清理数量
    """
    result = self._storylines.refresh_models()
    result["pruned_labels"] = self._phase.prune_cache()
    result["pruned_watchlist"] = self._watchlist.prune()
    return result

  # ============================================================
  # 帖子分析
  # ============================================================

  async def analyze_evolution(
    self,
    topic: str,
    content: str,
    hints: Optional[dict] = None,
  ) -> EvolutionAnalysis:
    """
    分析帖子在话题中的角度与阶段，并记入话题簇

    Args:
      topic: 话题（任意大小写）
      content: 帖子内容
      hints: 标签生成提示（trending / watchlist）

    Returns:
      EvolutionAnalysis，话题或内容为空时返回默认结果
    """
    key = normalize_topic(topic)
    if key is None or not content or not content.strip():
      return EvolutionAnalysis.default(key or "")
    if not self._config.enabled:
      return EvolutionAnalysis.default(key)

    async with self._lock(key):
      try:
        subtopic = await self._phase.label(key, content, hints)
        phase = self._phase.infer_phase(subtopic, key)
        now = self._clock()

        is_novel = self._phase.is_novel_angle(self._clusters.get(key), subtopic, now)
        cluster = self._clusters.update(key, subtopic, phase, now, content)
        change = self._phase.detect_phase_change(cluster)
        score = self._phase.evolution_score(cluster, subtopic)
      except Exception as e:
        logger.debug("话题演化分析失败 (%s): %s", key, e)
        return EvolutionAnalysis.default(key)

    analysis = EvolutionAnalysis(
      subtopic=subtopic,
      is_novel_angle=is_novel,
      is_phase_change=change.is_change,
      phase=phase,
      evolution_score=score,
      signals=self._phase.signals(subtopic, is_novel, change.is_change, phase, score),
    )
    logger.debug(
      "话题演化 %s → %s (新角度=%s, 阶段切换=%s, 分=%.2f)",
      key, subtopic, is_novel, change.is_change, score,
    )
    return analysis

  async def track_storylines(
    self,
    content: str,
    topics: Iterable[str],
    timestamp: Optional[datetime] = None,
  ) -> list[StorylineEvent]:
    """
    对帖子的每个话题更新故事线（同话题串行）

    Returns:
      事件列表，全部未识别时返回单个 unknown 事件
    """
    events = []
    if content and content.strip() and self._config.enabled:
      seen = set()
      for raw in topics or ():
        key = normalize_topic(raw)
        if key is None or key in seen:
          continue
        seen.add(key)
        async with self._lock(key):
          event = await self._storylines.analyze(key, content, timestamp)
        if event.type != "unknown":
          events.append(event)
    return events or [StorylineEvent.unknown("")]

  def check_storyline_advancement(
    self,
    content: str,
    topics: Iterable[str] = (),
  ) -> Optional[StorylineAdvancement]:
    """帖子是否推进了近期摘要中的故事线，摘要不足 2 条返回 None"""
    return check_storyline_advancement(
      self._digests.all(), content, topics, self._config.continuity.lookback,
    )

  def analyze_continuity(self, lookback: Optional[int] = None) -> Optional[ContinuityReport]:
    return analyze_continuity(
      self._digests.all(), lookback or self._config.continuity.lookback,
    )

  def compute_freshness_penalty(
    self,
    topics: Iterable[str],
    evolution: Optional[EvolutionAnalysis] = None,
    advancement: Optional[StorylineAdvancement] = None,
    watchlist_match: Optional[WatchlistMatch] = None,
  ) -> float:
    return self._freshness.compute_penalty(topics, evolution, advancement, watchlist_match)

  async def evaluate_candidate(
    self,
    content: str,
    topics: Iterable[str],
    hints: Optional[dict] = None,
  ) -> dict:
    """
    为排序阶段汇总一条候选帖子的全部信号

    以第一个话题做演化分析，再计算推进、观察列表命中与新鲜度惩罚。

    Returns:
      {"evolution", "advancement", "watchlist", "penalty", "watchlist_boost"}
    """
    topic_list = [t for t in (topics or ()) if normalize_topic(t) is not None]
    evolution = None
    if topic_list:
      evolution = await self.analyze_evolution(topic_list[0], content, hints)
    advancement = self.check_storyline_advancement(content, topic_list)
    match = self._watchlist.check_match(content, topic_list)
    penalty = self.compute_freshness_penalty(topic_list, evolution, advancement, match)
    return {
      "evolution": evolution,
      "advancement": advancement,
      "watchlist": match,
      "penalty": penalty,
      "watchlist_boost": match.boost_score if match else 0.0,
    }

  # ============================================================
  # 话题查询
  # ============================================================

  def get_topic_evolution(self, topic: str, days: float = 30) -> TopicEvolution:
    """话题演化概览：每日叙事数据点（无则按天聚合时间线）+ 子话题分布"""
    key = normalize_topic(topic)
    if key is None:
      return TopicEvolution(topic="")
    history = self._trends.topic_data_points(key, days)
    return self._clusters.get_evolution(key, days, history, now=self._clock())

  def get_topic_recency(self, topic: str, lookback_hours: float = 24) -> TopicRecency:
    return self._digests.topic_recency(topic, lookback_hours)

  def get_recent_lore_tags(self, lookback: int = 3) -> set[str]:
    return self._digests.recent_tags(lookback)

  # ============================================================
  # 观察列表
  # ============================================================

  def add_watchlist_items(
    self,
    items: Iterable[str],
    source: str = "manual",
    digest_id: Optional[str] = None,
  ) -> list[str]:
    return self._watchlist.add_items(items, source, digest_id)

  def check_watchlist(self, content: str, tags: Iterable[str] = ()) -> Optional[WatchlistMatch]:
    return self._watchlist.check_match(content, tags)

  def get_watchlist_state(self) -> dict:
    return self._watchlist.get_state()

  # ============================================================
  # 摘要与历史叙事
  # ============================================================

  def store_digest(self, digest: Union[NarrativeDigest, dict]) -> NarrativeDigest:
    """
    存入外部叙事摘要，顺带抽取观察项

    Args:
      digest: NarrativeDigest 或松散字典

    Returns:
      实际存入的摘要（补全 ID 后）
    """
    if isinstance(digest, dict):
      digest = digest_from_dict(digest, self._clock())
    digest = self._digests.append(digest)

    if digest.watchlist:
      self._watchlist.add_items(digest.watchlist, "digest", digest.id)

    try:
      ok = self._persistence.create_record("lore", {
        "id": digest.id,
        "headline": digest.headline,
        "tags": list(digest.tags),
        "priority": digest.priority,
        "narrative": digest.narrative,
        "insights": list(digest.insights),
        "watchlist": list(digest.watchlist),
        "tone": digest.tone,
        "timestamp": digest.timestamp.isoformat(),
      })
    except Exception as e:
      logger.debug("摘要持久化异常: %s", e)
      ok = False
    if not ok:
      logger.debug("摘要 %s 未能持久化，仅保留内存副本", digest.id)
    return digest

  def get_recent_digest_summaries(self, limit: int = 3) -> list[dict]:
    return self._digests.recent_summaries(limit)

  def store_hourly_narrative(self, narrative: HistoricalNarrative) -> None:
    self._trends.store_hourly(narrative)

  def store_daily_narrative(self, narrative: HistoricalNarrative) -> Optional[HistoricalNarrative]:
    return self._trends.store_daily(narrative)

  def store_weekly_narrative(self, narrative: HistoricalNarrative) -> None:
    self._trends.store_weekly(narrative)

  def compare_with_history(
    self,
    current: HistoricalNarrative,
    period: str = "7d",
  ) -> HistoryComparison:
    return self._trends.compare_with_history(current, period)

  def get_similar_past_moments(
    self,
    current: HistoricalNarrative,
    limit: int = 5,
  ) -> list[SimilarMoment]:
    return self._trends.similar_past_moments(current, limit)

  def load_from_persistence(self) -> int:
    """
    从持久化协作者恢复摘要与历史叙事

    Returns:
      恢复的记录数
    """
    loaded = self._trends.load_from_persistence()
    try:
      records = self._persistence.query_records("lore", self._config.max_digests)
    except Exception as e:
      logger.debug("查询历史摘要失败: %s", e)
      records = []

    digests = []
    for record in records:
      try:
        digests.append(digest_from_dict(record))
      except (TypeError, ValueError) as e:
        logger.debug("跳过无法解析的摘要记录: %s", e)
    for digest in sorted(digests, key=lambda d: d.timestamp):
      self._digests.append(digest)
    return loaded + len(digests)

  # ============================================================
  # 输出
  # ============================================================

  def format_context(self, analysis: Optional[EvolutionAnalysis] = None) -> str:
    """
    组装 prompt 上下文（无模型请求）

    包含演化分析（可选）、连续性摘要、观察列表。
    """
    sections = []
    if analysis is not None:
      sections.append(format_evolution(analysis))
    continuity = format_continuity(self.analyze_continuity())
    if continuity:
      sections.append(continuity)
    watch = format_watchlist(self.get_watchlist_state())
    if watch:
      sections.append(watch)
    return "\n\n".join(sections)

  def stats(self) -> dict:
    """只读统计：话题数、活跃故事线、缓存大小、剩余调用额度"""
    storyline_stats = self._storylines.stats()
    phase_stats = self._phase.stats()
    return {
      "tracked_topics": self._clusters.topic_count(),
      "active_storylines": storyline_stats["active_storylines"],
      "topic_models": storyline_stats["topic_models"],
      "label_cache_size": phase_stats["label_cache_size"],
      "model_cache_size": storyline_stats["model_cache_size"],
      "remaining_call_budget": storyline_stats["remaining_call_budget"],
      "watchlist_active": len(self._watchlist.active_items()),
      "digests": len(self._digests),
      "narratives": self._trends.stats(),
    }

  def debug_state(self) -> dict:
    """
    获取调试状态快照

    Returns:
      包含引擎当前状态的字典
    """
    return {
      "running": self._running,
      "classifier_available": self._classifier.available,
      "stats": self.stats(),
      "clusters": self._clusters.debug_state(),
      "labels": self._phase.stats(),
      "storylines": self._storylines.stats(),
      "watchlist": self._watchlist.health(),
      "recent_digests": self.get_recent_digest_summaries(),
    }
