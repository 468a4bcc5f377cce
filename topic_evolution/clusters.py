"""
话题簇存储
按规范化话题键维护有界的角度时间线
"""

import logging
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import ClusterConfig
from .models import (
  ClusterEntry, Phase, TopicCluster, TopicDataPoint, TopicEvolution, TopicKey,
  Trend,
)

logger = logging.getLogger(__name__)


def trend_direction(values: list[float]) -> Trend:
  """
  计算趋势方向

  最近 7 个值的均值与之前 7 个值的均值比较：
  高于 1.2 倍为 rising，低于 0.8 倍为 declining，其余 stable。

  Args:
    values: 按时间升序的数值序列

  Returns:
    Trend
  """
  if len(values) < 2:
    return Trend.STABLE
  recent = values[-7:]
  older = values[-14:-7]
  if not older:
    return Trend.STABLE

  recent_avg = sum(recent) / len(recent)
  older_avg = sum(older) / len(older)
  if recent_avg > older_avg * 1.2:
    return Trend.RISING
  if recent_avg < older_avg * 0.8:
    return Trend.DECLINING
  return Trend.STABLE


class TopicClusterStore:
  """
  话题簇表

  纯内存结构，话题首次出现时创建，进程生命周期内只裁剪不删除。
  """

  def __init__(self, config: Optional[ClusterConfig] = None):
    self._config = config or ClusterConfig()
    self._clusters: dict[TopicKey, TopicCluster] = {}

  def get_or_create(self, topic: TopicKey) -> TopicCluster:
    """获取话题簇，不存在则创建（幂等）"""
    cluster = self._clusters.get(topic)
    if cluster is None:
      cluster = TopicCluster(
        topic=topic,
        timeline=deque(maxlen=self._config.max_entries),
      )
      self._clusters[topic] = cluster
      logger.debug("新建话题簇: %s", topic)
    return cluster

  def get(self, topic: TopicKey) -> Optional[TopicCluster]:
    return self._clusters.get(topic)

  def update(
    self,
    topic: TopicKey,
    subtopic: str,
    phase: Phase,
    timestamp: datetime,
    snippet: str = "",
  ) -> TopicCluster:
    """
    记录一次观测

    追加时间线条目，更新子话题集合、最近提及时间与当前阶段，
    超出上限时最旧条目被挤出。

    Returns:
      更新后的话题簇
    """
    cluster = self.get_or_create(topic)
    cluster.timeline.append(ClusterEntry(
      subtopic=subtopic,
      phase=phase,
      timestamp=timestamp,
      snippet=(snippet or "")[:self._config.snippet_length],
    ))
    cluster.subtopics.add(subtopic)
    cluster.last_mentions[subtopic] = timestamp
    cluster.current_phase = phase
    return cluster

  def topics(self) -> list[TopicKey]:
    return list(self._clusters)

  def topic_count(self) -> int:
    return len(self._clusters)

  def get_evolution(
    self,
    topic: TopicKey,
    window_days: float = 30,
    history: Iterable[TopicDataPoint] = (),
    now: Optional[datetime] = None,
  ) -> TopicEvolution:
    """
    获取话题在窗口内的演化概览

    数据点优先使用外部传入的历史数据点（来自每日叙事），
    没有时按天聚合话题簇时间线。

    Args:
      topic: 话题键
      window_days: 窗口天数
      history: 历史数据点
      now: 参考时间

    Returns:
      TopicEvolution，未知话题返回空结果
    """
    now = now or datetime.now()
    cutoff = now - timedelta(days=window_days)
    cluster = self._clusters.get(topic)

    points = [p for p in history if p.timestamp >= cutoff]
    if not points and cluster is not None:
      points = self._bucket_timeline(cluster, cutoff)
    points.sort(key=lambda p: p.timestamp)

    trend = trend_direction([float(p.mentions) for p in points])

    if cluster is None:
      return TopicEvolution(
        topic=topic,
        data_points=tuple(points),
        trend=trend,
        summary=self._summarize(topic, points, trend, None),
      )

    counts = Counter(
      entry.subtopic for entry in cluster.timeline if entry.timestamp >= cutoff
    )
    top = counts.most_common(self._config.top_subtopics)

    return TopicEvolution(
      topic=topic,
      data_points=tuple(points),
      trend=trend,
      subtopics=tuple(top),
      subtopic_count=len(cluster.subtopics),
      current_phase=cluster.current_phase,
      summary=self._summarize(topic, points, trend, cluster.current_phase),
    )

  @staticmethod
  def _bucket_timeline(cluster: TopicCluster, cutoff: datetime) -> list[TopicDataPoint]:
    """按天聚合时间线"""
    per_day: Counter = Counter()
    for entry in cluster.timeline:
      if entry.timestamp >= cutoff:
        per_day[entry.timestamp.date()] += 1
    return [
      TopicDataPoint(timestamp=datetime.combine(day, datetime.min.time()), mentions=n)
      for day, n in per_day.items()
    ]

  @staticmethod
  def _summarize(
    topic: str,
    points: list[TopicDataPoint],
    trend: Trend,
    phase: Optional[Phase],
  ) -> str:
    if not points:
      return f"No historical data for {topic}"
    total = sum(p.mentions for p in points)
    text = f"{topic}: {total} mentions across {len(points)} periods, trend {trend.value}"
    if phase is not None:
      text += f", phase {phase.value}"
    return text

  def debug_state(self) -> dict:
    return {
      "topics": self.topic_count(),
      "entries": sum(len(c.timeline) for c in self._clusters.values()),
    }
