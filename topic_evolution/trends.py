"""
历史趋势聚合
保存时段叙事（hourly / daily / weekly），与当前摘要做对比
"""

import logging
from collections import Counter, deque
from dataclasses import asdict, replace
from datetime import datetime, timedelta
from typing import Optional

from .config import TrendConfig
from .models import (
  HistoricalNarrative, HistoryComparison, SimilarMoment, TopicChanges,
  TopicDataPoint, TrendDelta,
)
from .persistence import NullPersistence, Persistence
from .ttl import Clock, parse_timestamp

logger = logging.getLogger(__name__)

SENTIMENT_BUCKETS = ("positive", "negative", "neutral")

# 对比周期 → 各缓冲取最近多少条 (hourly, daily, weekly)
PERIOD_WINDOWS = {
  "1h": (1, 0, 0),
  "24h": (24, 1, 0),
  "7d": (0, 7, 1),
  "30d": (0, 30, 4),
}
DEFAULT_PERIOD = "7d"


def _tail(buffer: deque, n: int) -> list[HistoricalNarrative]:
  if n <= 0:
    return []
  return list(buffer)[-n:]


def narrative_to_record(narrative: HistoricalNarrative) -> dict:
  record = asdict(narrative)
  record["timestamp"] = narrative.timestamp.isoformat()
  record["key_moments"] = list(narrative.key_moments)
  return record


def narrative_from_record(record: dict) -> HistoricalNarrative:
  return HistoricalNarrative(
    period=record.get("period", "daily"),
    timestamp=parse_timestamp(record.get("timestamp")),
    event_count=int(record.get("event_count") or 0),
    user_count=int(record.get("user_count") or 0),
    top_topics={str(k): int(v) for k, v in (record.get("top_topics") or {}).items()},
    sentiment={str(k): float(v) for k, v in (record.get("sentiment") or {}).items()},
    summary=str(record.get("summary") or ""),
    key_moments=tuple(record.get("key_moments") or ()),
  )


class TrendAggregator:
  """
  历史叙事缓冲与趋势对比

  三个有界缓冲：hourly（默认 168 条，7 天）、daily（90 条）、weekly（52 条）。
  写入时同步写穿到持久化协作者，失败只记录日志。
  """

  def __init__(
    self,
    config: Optional[TrendConfig] = None,
    persistence: Optional[Persistence] = None,
    clock: Clock = datetime.now,
  ):
    self._config = config or TrendConfig()
    self._persistence: Persistence = persistence or NullPersistence()
    self._clock = clock
    self._hourly: deque[HistoricalNarrative] = deque(maxlen=self._config.max_hourly)
    self._daily: deque[HistoricalNarrative] = deque(maxlen=self._config.max_daily)
    self._weekly: deque[HistoricalNarrative] = deque(maxlen=self._config.max_weekly)

  # ============================================================
  # 写入
  # ============================================================

  def _persist(self, narrative: HistoricalNarrative) -> None:
    try:
      ok = self._persistence.create_record(
        f"narrative_{narrative.period}", narrative_to_record(narrative),
      )
    except Exception as e:
      logger.debug("叙事持久化异常 (%s): %s", narrative.period, e)
      ok = False
    if not ok:
      logger.debug("叙事持久化失败 (%s)，仅保留内存副本", narrative.period)

  @staticmethod
  def _local(narrative: HistoricalNarrative) -> HistoricalNarrative:
    if narrative.timestamp.tzinfo is None:
      return narrative
    return replace(narrative, timestamp=parse_timestamp(narrative.timestamp))

  def store_hourly(self, narrative: HistoricalNarrative) -> None:
    narrative = self._local(narrative)
    self._hourly.append(narrative)
    self._persist(narrative)

  def store_daily(self, narrative: HistoricalNarrative) -> Optional[HistoricalNarrative]:
    """
    写入每日叙事，满足条件时顺带生成周汇总

    Returns:
      新生成的周汇总，未生成返回 None
    """
    narrative = self._local(narrative)
    self._daily.append(narrative)
    self._persist(narrative)
    return self._maybe_roll_up_week()

  def store_weekly(self, narrative: HistoricalNarrative) -> None:
    narrative = self._local(narrative)
    self._weekly.append(narrative)
    self._persist(narrative)

  def load_from_persistence(self) -> int:
    """
    从持久化协作者恢复缓冲

    Returns:
      恢复的记录数
    """
    loaded = 0
    for period, buffer in (
      ("hourly", self._hourly), ("daily", self._daily), ("weekly", self._weekly),
    ):
      try:
        records = self._persistence.query_records(f"narrative_{period}", buffer.maxlen)
      except Exception as e:
        logger.debug("查询历史叙事失败 (%s): %s", period, e)
        continue
      narratives = []
      for record in records:
        try:
          narratives.append(narrative_from_record(record))
        except (TypeError, ValueError) as e:
          logger.debug("跳过无法解析的叙事记录: %s", e)
      narratives.sort(key=lambda n: n.timestamp)
      buffer.extend(narratives)
      loaded += len(narratives)
    if loaded:
      logger.info("从持久化恢复 %d 条历史叙事", loaded)
    return loaded

  @property
  def hourly(self) -> list[HistoricalNarrative]:
    return list(self._hourly)

  @property
  def daily(self) -> list[HistoricalNarrative]:
    return list(self._daily)

  @property
  def weekly(self) -> list[HistoricalNarrative]:
    return list(self._weekly)

  # ============================================================
  # 周汇总
  # ============================================================

  def _maybe_roll_up_week(self) -> Optional[HistoricalNarrative]:
    last = self._weekly[-1] if self._weekly else None
    if last is None:
      if len(self._daily) >= 7:
        return self.generate_weekly_summary()
      return None
    if self._clock() - last.timestamp >= timedelta(days=7):
      return self.generate_weekly_summary()
    return None

  def generate_weekly_summary(self) -> Optional[HistoricalNarrative]:
    """
    由最近 7 条每日叙事聚合周汇总

    每日叙事少于 weekly_min_dailies 条时返回 None。
    """
    last_week = _tail(self._daily, 7)
    if len(last_week) < self._config.weekly_min_dailies:
      logger.debug("每日叙事不足 %d 条，跳过周汇总", self._config.weekly_min_dailies)
      return None

    topics: Counter = Counter()
    sentiment: Counter = Counter()
    moments: list[str] = []
    for daily in last_week:
      topics.update(daily.top_topics)
      sentiment.update(daily.sentiment)
      moments.extend(daily.key_moments)

    start = last_week[0].timestamp.date().isoformat()
    end = last_week[-1].timestamp.date().isoformat()
    dominant = max(SENTIMENT_BUCKETS, key=lambda k: sentiment.get(k, 0))
    total_events = sum(d.event_count for d in last_week)

    summary = HistoricalNarrative(
      period="weekly",
      timestamp=self._clock(),
      event_count=total_events,
      user_count=max((d.user_count for d in last_week), default=0),
      top_topics=dict(topics.most_common(self._config.top_topics)),
      sentiment={k: float(sentiment.get(k, 0)) for k in SENTIMENT_BUCKETS},
      summary=f"Week {start} to {end}: {total_events} events, mostly {dominant}",
      key_moments=tuple(moments[:7]),
    )
    self.store_weekly(summary)
    logger.info("生成周汇总: %d 个事件, %d 个话题", total_events, len(summary.top_topics))
    return summary

  # ============================================================
  # 历史对比
  # ============================================================

  def historical_context(self, period: str) -> tuple[list, list, list]:
    """按周期取 (hourly, daily, weekly) 历史窗口，未知周期按 7d 处理"""
    n_hourly, n_daily, n_weekly = PERIOD_WINDOWS.get(period, PERIOD_WINDOWS[DEFAULT_PERIOD])
    return (
      _tail(self._hourly, n_hourly),
      _tail(self._daily, n_daily),
      _tail(self._weekly, n_weekly),
    )

  def _trend(self, current: float, samples: list[float]) -> TrendDelta:
    values = [v for v in samples if v > 0]
    if not values:
      return TrendDelta(direction="stable", change=0.0, current=current, average=0.0)
    average = sum(values) / len(values)
    change = (current - average) / average * 100
    threshold = self._config.trend_threshold
    if change > threshold:
      direction = "up"
    elif change < -threshold:
      direction = "down"
    else:
      direction = "stable"
    return TrendDelta(direction=direction, change=round(change, 1), current=current, average=average)

  def _historical_topics(self, narratives: list[HistoricalNarrative]) -> list[str]:
    totals: Counter = Counter()
    for narrative in narratives:
      totals.update(narrative.top_topics)
    return [topic for topic, _ in totals.most_common(self._config.top_topics)]

  @staticmethod
  def _historical_sentiment(narratives: list[HistoricalNarrative]) -> dict[str, float]:
    with_sentiment = [n.sentiment for n in narratives if n.sentiment]
    if not with_sentiment:
      return {k: 0.0 for k in SENTIMENT_BUCKETS}
    return {
      k: sum(s.get(k, 0) for s in with_sentiment) / len(with_sentiment)
      for k in SENTIMENT_BUCKETS
    }

  def compare_with_history(
    self,
    current: HistoricalNarrative,
    period: str = DEFAULT_PERIOD,
  ) -> HistoryComparison:
    """
    当前摘要与历史均值对比

    Args:
      current: 当前时段的聚合（event_count / user_count / top_topics / sentiment）
      period: 1h / 24h / 7d / 30d，其余按 7d

    Returns:
      HistoryComparison
    """
    if period not in PERIOD_WINDOWS:
      logger.debug("未知对比周期 %r，按 %s 处理", period, DEFAULT_PERIOD)
      period = DEFAULT_PERIOD
    hourly, daily, weekly = self.historical_context(period)
    averaged = hourly + daily
    topical = daily + weekly

    event_trend = self._trend(float(current.event_count), [float(n.event_count) for n in averaged])
    user_trend = self._trend(float(current.user_count), [float(n.user_count) for n in averaged])

    current_topics = [
      t for t, _ in Counter(current.top_topics).most_common(self._config.top_topics)
    ]
    historical_topics = self._historical_topics(topical)
    changes = TopicChanges(
      emerging=tuple(t for t in current_topics if t not in historical_topics),
      declining=tuple(t for t in historical_topics if t not in current_topics),
      stable=tuple(t for t in current_topics if t in historical_topics),
    )

    hist_sentiment = self._historical_sentiment(topical)
    shifts: dict[str, float] = {}
    for bucket in SENTIMENT_BUCKETS:
      curr = float(current.sentiment.get(bucket, 0))
      hist = hist_sentiment.get(bucket, 0.0)
      total = curr + hist
      if total > 0:
        change = (curr - hist) / total * 100
        if abs(change) > self._config.sentiment_threshold:
          shifts[bucket] = round(change, 1)

    patterns = []
    if event_trend.change > self._config.spike_threshold:
      patterns.append("activity_spike")
    if len(changes.emerging) > self._config.explosion_threshold:
      patterns.append("topic_explosion")

    return HistoryComparison(
      period=period,
      event_trend=event_trend,
      user_trend=user_trend,
      topic_changes=changes,
      sentiment_shift=shifts,
      emerging_patterns=tuple(patterns),
    )

  # ============================================================
  # 话题数据点与相似时刻
  # ============================================================

  def topic_data_points(self, topic: str, days: float = 30) -> list[TopicDataPoint]:
    """每日叙事中提到该话题（子串匹配）的数据点"""
    needle = (topic or "").strip().lower()
    if not needle:
      return []
    cutoff = self._clock() - timedelta(days=days)
    points = []
    for daily in self._daily:
      if daily.timestamp < cutoff:
        continue
      mentions = next(
        (count for name, count in daily.top_topics.items() if needle in name.lower()),
        None,
      )
      if mentions is not None:
        points.append(TopicDataPoint(timestamp=daily.timestamp, mentions=int(mentions)))
    return points

  def similar_past_moments(
    self,
    current: HistoricalNarrative,
    limit: int = 5,
  ) -> list[SimilarMoment]:
    """
    与当前摘要相似的历史每日叙事

    相似度 = 话题 Jaccard × 0.7 + 情感相似度 × 0.3，超过阈值才返回。
    """
    current_topics = set(current.top_topics)
    moments = []
    for past in self._daily:
      past_topics = set(past.top_topics)
      union = current_topics | past_topics
      topic_sim = len(current_topics & past_topics) / len(union) if union else 0.0
      diff = (
        abs(current.sentiment.get("positive", 0) - past.sentiment.get("positive", 0))
        + abs(current.sentiment.get("negative", 0) - past.sentiment.get("negative", 0))
      )
      similarity = topic_sim * 0.7 + (1 - diff / 100) * 0.3
      if similarity > self._config.similarity_threshold:
        moments.append(SimilarMoment(narrative=past, similarity=similarity))
    moments.sort(key=lambda m: m.similarity, reverse=True)
    return moments[:limit]

  def stats(self) -> dict:
    return {
      "hourly": len(self._hourly),
      "daily": len(self._daily),
      "weekly": len(self._weekly),
    }
