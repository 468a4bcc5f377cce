"""
新鲜度惩罚
近期被反复报道的话题降权，新角度、阶段切换、故事线推进减轻惩罚
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from .config import FreshnessConfig
from .digests import DigestBuffer
from .models import (
  EvolutionAnalysis, StorylineAdvancement, WatchlistMatch, normalize_topic,
)
from .ttl import Clock

logger = logging.getLogger(__name__)


def clamp01(value: float) -> float:
  return max(0.0, min(1.0, value))


def staleness(
  mentions: int,
  hours_since: Optional[float],
  config: FreshnessConfig,
) -> float:
  """
  单个话题的陈旧度

  clamp01((lookback - hours_since) / lookback) × (0.25 + 0.35 × clamp01(mentions / full_intensity))
  没有提及时为 0。
  """
  if mentions <= 0 or hours_since is None or config.lookback_hours <= 0:
    return 0.0
  recency = clamp01((config.lookback_hours - hours_since) / config.lookback_hours)
  full = max(1, config.mentions_full_intensity)
  intensity = 0.25 + 0.35 * clamp01(mentions / full)
  return recency * intensity


class FreshnessScorer:
  """
  新鲜度惩罚计算

  结果始终落在 [0, max_penalty]，每一步都做截断。
  """

  def __init__(
    self,
    digests: DigestBuffer,
    config: Optional[FreshnessConfig] = None,
    clock: Clock = datetime.now,
  ):
    self._digests = digests
    self._config = config or FreshnessConfig()
    self._clock = clock

  def _clamp(self, value: float) -> float:
    return max(0.0, min(self._config.max_penalty, value))

  def compute_penalty(
    self,
    topics: Iterable[str],
    evolution: Optional[EvolutionAnalysis] = None,
    advancement: Optional[StorylineAdvancement] = None,
    watchlist_match: Optional[WatchlistMatch] = None,
  ) -> float:
    """
    计算新鲜度惩罚

    Args:
      topics: 帖子话题
      evolution: 演化分析结果（新角度 / 阶段切换时惩罚减半）
      advancement: 故事线推进结果（任一信号成立时减去固定值）
      watchlist_match: 观察列表命中（同上）

    Returns:
      惩罚值 ∈ [0, max_penalty]
    """
    cfg = self._config
    if not cfg.enabled:
      return 0.0

    keys = []
    for raw in topics or ():
      key = normalize_topic(raw)
      if key is not None and key not in keys:
        keys.append(key)
    if not keys:
      return 0.0

    now = self._clock()
    penalty = 0.0
    for key in keys:
      recency = self._digests.topic_recency(key, cfg.lookback_hours)
      hours_since = None
      if recency.last_seen is not None:
        hours_since = max(0.0, (now - recency.last_seen).total_seconds() / 3600)
      penalty = max(penalty, staleness(recency.mentions, hours_since, cfg))
    penalty = self._clamp(penalty)

    recent_tags = self._digests.recent_tags(cfg.lookback_digests)
    if any(key in recent_tags for key in keys):
      penalty = self._clamp(penalty + cfg.similarity_bump)

    if evolution is not None and (evolution.is_novel_angle or evolution.is_phase_change):
      penalty = self._clamp(penalty * (1 - cfg.novelty_reduction))

    advanced = advancement is not None and advancement.any
    if advanced or watchlist_match is not None:
      penalty = self._clamp(penalty - cfg.advancement_reduction)

    logger.debug("新鲜度惩罚 %s → %.3f", keys, penalty)
    return penalty
