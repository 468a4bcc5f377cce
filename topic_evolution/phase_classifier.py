"""
阶段分类器
将 (topic, content) 映射为子话题标签与讨论阶段
模型优先（可选），失败或未配置时降级为关键词启发式
"""

import asyncio
import hashlib
import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from .collaborators import NullClassifier, TextClassifier, clean_subtopic_label
from .config import PhaseConfig
from .models import Phase, PhaseChange, TopicCluster, TopicKey
from .prompts import SUBTOPIC_LABEL_PROMPT
from .ttl import Clock, TTLMap

logger = logging.getLogger(__name__)


# 启发式子话题：按顺序匹配，命中第一个即返回
HEURISTIC_SUBTOPICS: tuple[tuple[str, re.Pattern], ...] = (
  ("price", re.compile(r"price|volatil|market|trading|\$|usd|pump|dump|rally", re.I)),
  ("etf-approval", re.compile(r"approv|regulat|\betf\b|\bsec\b|law|legal|policy|government", re.I)),
  ("technical", re.compile(r"protocol|\bdev\b|develop|code|release|upgrade|\bbip\b|\bnip\b|soft ?fork", re.I)),
  ("adoption", re.compile(r"adopt|merchant|users|mainstream|integrat|accept", re.I)),
)

# 标签 → 阶段关键词表，按顺序匹配
PHASE_KEYWORDS: tuple[tuple[Phase, tuple[str, ...]], ...] = (
  (Phase.ANNOUNCEMENT, (
    "announce", "launch", "release", "approval", "approved", "introduc",
    "official", "confirm",
  )),
  (Phase.ADOPTION, (
    "adoption", "adopt", "merchant", "integrat", "deploy", "users", "production",
  )),
  (Phase.SPECULATION, (
    "rumor", "speculat", "price", "predict", "might", "hearing", "unconfirmed",
  )),
  (Phase.ANALYSIS, (
    "analysis", "technical", "deep-dive", "breakdown", "explain", "review",
  )),
  (Phase.BACKLASH, (
    "backlash", "controvers", "criticism", "concern", "problem", "failed",
    "hack", "exploit",
  )),
)

_WORD_SPLIT = re.compile(r"[\s\-_]+")


def _topic_slug(topic: str) -> str:
  return re.sub(r"\s+", "-", topic.strip())


def heuristic_label(topic: TopicKey, content: str) -> str:
  """
  关键词启发式子话题标签

  Args:
    topic: 话题键
    content: 帖子内容

  Returns:
    "{topic}-price" / "-etf-approval" / "-technical" / "-adoption" / "-general"
  """
  slug = _topic_slug(topic)
  for suffix, pattern in HEURISTIC_SUBTOPICS:
    if pattern.search(content or ""):
      return f"{slug}-{suffix}"
  return f"{slug}-general"


def infer_phase(label: str, topic: Optional[str] = None) -> Phase:
  """
  仅根据标签推断阶段

  标签以话题前缀开头时只看后缀部分，避免话题名本身命中关键词。

  Args:
    label: 子话题标签
    topic: 话题键（可选）

  Returns:
    Phase，无匹配时为 GENERAL
  """
  text = (label or "").lower()
  if topic:
    prefix = _topic_slug(topic) + "-"
    if text.startswith(prefix):
      text = text[len(prefix):]
  for phase, keywords in PHASE_KEYWORDS:
    if any(kw in text for kw in keywords):
      return phase
  return Phase.GENERAL


def _words(label: str) -> set[str]:
  return {w for w in _WORD_SPLIT.split(label.lower()) if w}


def jaccard(a: set[str], b: set[str]) -> float:
  if not a and not b:
    return 0.0
  return len(a & b) / len(a | b)


class PhaseClassifier:
  """
  阶段分类器

  职责：
  - 子话题标签（模型 → 启发式，带 TTL 缓存）
  - 标签 → 阶段推断
  - 新角度判定、阶段切换检测、演化分
  """

  def __init__(
    self,
    classifier: Optional[TextClassifier] = None,
    config: Optional[PhaseConfig] = None,
    clock: Clock = datetime.now,
  ):
    """
    Args:
      classifier: 文本分类协作者，None 时只用启发式
      config: 配置
      clock: 时钟函数
    """
    self._classifier: TextClassifier = classifier or NullClassifier()
    self._config = config or PhaseConfig()
    self._clock = clock
    self._cache: TTLMap[str, str] = TTLMap(
      timedelta(seconds=self._config.label_cache_ttl_seconds),
      clock=clock,
      max_size=self._config.label_cache_max,
    )
    self._model_labels = 0
    self._heuristic_labels = 0

  def _cache_key(self, topic: TopicKey, content: str) -> str:
    prefix = (content or "")[:self._config.content_prefix_length]
    return hashlib.md5(f"{prefix}{topic}".encode("utf-8")).hexdigest()

  async def label(
    self,
    topic: TopicKey,
    content: str,
    hints: Optional[dict] = None,
  ) -> str:
    """
    生成子话题标签

    Args:
      topic: 话题键
      content: 帖子内容
      hints: 上下文提示，可含 "trending" / "watchlist" 列表

    Returns:
      子话题标签
    """
    key = self._cache_key(topic, content)
    cached = self._cache.get(key)
    if cached is not None:
      return cached

    label = None
    if self._config.model_enabled and self._classifier.available:
      label = await self._label_with_model(topic, content, hints or {})

    if label is None:
      label = heuristic_label(topic, content)
      self._heuristic_labels += 1
    else:
      self._model_labels += 1

    self._cache.set(key, label)
    return label

  async def _label_with_model(
    self,
    topic: TopicKey,
    content: str,
    hints: dict,
  ) -> Optional[str]:
    """调用模型生成标签，失败或输出无效返回 None"""
    hint_parts = []
    if hints.get("trending"):
      hint_parts.append("trending: " + ", ".join(map(str, hints["trending"])))
    if hints.get("watchlist"):
      hint_parts.append("watchlist: " + ", ".join(map(str, hints["watchlist"])))

    prompt = SUBTOPIC_LABEL_PROMPT.format(
      topic=topic,
      hints="; ".join(hint_parts) or "none",
      content=content[:400],
    )
    try:
      text = await asyncio.wait_for(
        self._classifier.classify(
          prompt,
          max_tokens=self._config.model_max_tokens,
          temperature=self._config.model_temperature,
        ),
        timeout=self._config.model_timeout_seconds,
      )
    except Exception as e:
      logger.debug("子话题标签模型调用失败，使用启发式: %s", e)
      return None

    label = clean_subtopic_label(text, self._config.max_label_length)
    if label is None:
      logger.debug("子话题标签无效，使用启发式: %r", text[:80] if text else text)
    return label

  def infer_phase(self, label: str, topic: Optional[str] = None) -> Phase:
    return infer_phase(label, topic)

  def is_novel_angle(
    self,
    cluster: Optional[TopicCluster],
    subtopic: str,
    now: Optional[datetime] = None,
  ) -> bool:
    """
    判定子话题是否为新角度（在更新话题簇之前调用）

    - 空话题簇：新角度
    - 已出现过：距上次提及超过 revisit_hours 才算新角度
    - 与已有子话题词集相似度超过阈值：不是新角度
    """
    if cluster is None or cluster.is_empty:
      return True

    now = now or self._clock()
    if subtopic in cluster.subtopics:
      last = cluster.last_mentions.get(subtopic)
      if last is None:
        return True
      return now - last > timedelta(hours=self._config.revisit_hours)

    words = _words(subtopic)
    for existing in cluster.subtopics:
      if jaccard(words, _words(existing)) > self._config.similarity_threshold:
        return False
    return True

  def detect_phase_change(self, cluster: TopicCluster) -> PhaseChange:
    """
    检测阶段切换

    取最近 phase_window 条的多数阶段（平票取最近出现者）与当前阶段比较。
    时间线不足 phase_min_timeline 条时原样返回当前阶段，不报告切换。
    """
    if len(cluster.timeline) < self._config.phase_min_timeline:
      return PhaseChange(phase=cluster.current_phase, is_change=False)

    window = list(cluster.timeline)[-self._config.phase_window:]
    counts = Counter(entry.phase for entry in window)
    best = max(counts.values())
    dominant = next(
      entry.phase for entry in reversed(window) if counts[entry.phase] == best
    )
    return PhaseChange(phase=dominant, is_change=dominant != cluster.current_phase)

  def evolution_score(self, cluster: TopicCluster, subtopic: str) -> float:
    """
    演化分 0~1（在更新话题簇之后调用）

    多样性：最近窗口内不同子话题数 / diversity_target（上限 1）
    近期加成：子话题位于最近 recency_window 条内时加 recency_bonus
    窗口均排除刚追加的那一条。
    """
    history = list(cluster.timeline)[:-1]
    if not history:
      return 0.0

    recent = history[-self._config.diversity_window:]
    unique = len({entry.subtopic for entry in recent})
    score = min(1.0, unique / self._config.diversity_target)

    last_few = history[-self._config.recency_window:]
    if any(entry.subtopic == subtopic for entry in last_few):
      score += self._config.recency_bonus

    return max(0.0, min(1.0, score))

  def signals(
    self,
    subtopic: str,
    is_novel: bool,
    is_change: bool,
    phase: Phase,
    score: float,
  ) -> tuple[str, ...]:
    """人类可读的演化信号"""
    out = []
    if is_novel:
      out.append(f"novel angle: {subtopic}")
    if is_change:
      out.append(f"phase shift to {phase.value}")
    if score > 0.6:
      out.append("high evolution score")
    if phase != Phase.GENERAL:
      out.append(f"phase: {phase.value}")
    return tuple(out)

  def prune_cache(self) -> int:
    return self._cache.prune()

  def stats(self) -> dict:
    return {
      "label_cache_size": len(self._cache),
      "model_labels": self._model_labels,
      "heuristic_labels": self._heuristic_labels,
    }
