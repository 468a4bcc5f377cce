"""
叙事摘要缓冲
保存外部摘要器产出的 lore 记录（有界滚动），提供标签与近期提及查询
"""

import logging
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from .models import NarrativeDigest, TopicRecency, normalize_topic
from .ttl import Clock, parse_timestamp

logger = logging.getLogger(__name__)


def digest_from_dict(data: dict, timestamp: Optional[datetime] = None) -> NarrativeDigest:
  """
  从松散字典构建摘要

  缺失字段取默认值，列表字段过滤空值。
  """

  def _strings(value) -> tuple[str, ...]:
    if not value:
      return ()
    if isinstance(value, str):
      value = [value]
    return tuple(str(v).strip() for v in value if v and str(v).strip())

  stamp = parse_timestamp(data.get("timestamp"), timestamp)

  priority = str(data.get("priority") or "medium").strip().lower()
  if priority not in ("low", "medium", "high"):
    priority = "medium"

  return NarrativeDigest(
    headline=str(data.get("headline") or ""),
    tags=_strings(data.get("tags")),
    priority=priority,
    narrative=str(data.get("narrative") or ""),
    insights=_strings(data.get("insights")),
    watchlist=_strings(data.get("watchlist")),
    tone=str(data.get("tone") or ""),
    timestamp=stamp,
    id=data.get("id"),
  )


class DigestBuffer:
  """
  摘要滚动缓冲

  只追加，超出上限时最旧的摘要被挤出；对外只读。
  """

  def __init__(self, max_digests: int = 120, clock: Clock = datetime.now):
    self._digests: deque[NarrativeDigest] = deque(maxlen=max_digests)
    self._clock = clock

  def append(self, digest: NarrativeDigest) -> NarrativeDigest:
    """追加摘要，缺少 ID 时补一个；带时区的时间戳转为本地无时区时间"""
    if not digest.id:
      digest = replace(digest, id=f"lore_{uuid.uuid4().hex[:12]}")
    if digest.timestamp.tzinfo is not None:
      digest = replace(digest, timestamp=parse_timestamp(digest.timestamp))
    self._digests.append(digest)
    logger.debug("存入叙事摘要 %s: %s", digest.id, digest.headline[:60])
    return digest

  def __len__(self) -> int:
    return len(self._digests)

  def all(self) -> list[NarrativeDigest]:
    return list(self._digests)

  def recent(self, limit: int) -> list[NarrativeDigest]:
    if limit <= 0:
      return []
    return list(self._digests)[-limit:]

  def get(self, digest_id: str) -> Optional[NarrativeDigest]:
    for digest in self._digests:
      if digest.id == digest_id:
        return digest
    return None

  def recent_tags(self, lookback: int = 3) -> set[str]:
    """最近 lookback 条摘要的标签集合（小写）"""
    tags = set()
    for digest in self.recent(lookback):
      tags.update(str(t).strip().lower() for t in digest.tags if str(t).strip())
    return tags

  def topic_recency(self, topic: str, lookback_hours: float = 24) -> TopicRecency:
    """
    话题在窗口内的摘要提及次数与最后出现时间

    标签与话题按小写精确比较。
    """
    key = normalize_topic(topic)
    if key is None:
      return TopicRecency(mentions=0)

    cutoff = self._clock() - timedelta(hours=lookback_hours)
    mentions = 0
    last_seen = None
    for digest in self._digests:
      if digest.timestamp < cutoff:
        continue
      if any(str(t).strip().lower() == key for t in digest.tags):
        mentions += 1
        if last_seen is None or digest.timestamp > last_seen:
          last_seen = digest.timestamp
    return TopicRecency(mentions=mentions, last_seen=last_seen)

  def recent_summaries(self, limit: int = 3) -> list[dict]:
    """最近摘要的精简视图（供 prompt 上下文使用）"""
    return [
      {
        "id": d.id,
        "headline": d.headline,
        "tags": list(d.tags),
        "priority": d.priority,
        "tone": d.tone,
        "timestamp": d.timestamp,
      }
      for d in self.recent(limit)
    ]
