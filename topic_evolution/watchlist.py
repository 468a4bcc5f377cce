"""
观察列表监视器
跟踪摘要中预测的后续关注项，在 TTL 内检查其是否在新帖子中出现
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import WatchlistConfig
from .models import WatchlistItem, WatchlistMatch
from .ttl import Clock, TTLMap

logger = logging.getLogger(__name__)


# 过于宽泛、命中没有信息量的词
GENERIC_TERMS = frozenset({
  "bitcoin", "btc", "nostr", "crypto", "cryptocurrency", "lightning",
  "news", "update", "updates", "discussion", "discussions", "community",
  "trend", "trends", "market", "markets", "price", "activity", "content",
  "posts", "post", "people", "general", "things", "stuff", "topic", "topics",
})


def normalize_item(item: Optional[str], min_length: int = 3) -> Optional[str]:
  """
  规范化观察项：去空白、小写，过短或过于宽泛返回 None
  """
  if not item:
    return None
  text = str(item).strip().lower()
  if len(text) < min_length or text in GENERIC_TERMS:
    return None
  return text


def _fold_tag(tag: str) -> str:
  return tag.lower().replace("-", " ").replace("_", " ").strip()


class WatchlistMonitor:
  """
  观察列表

  条目在 now - added_at > ttl 时失效；插入时去重，插入后顺带清理过期条目。
  """

  def __init__(
    self,
    config: Optional[WatchlistConfig] = None,
    clock: Clock = datetime.now,
  ):
    self._config = config or WatchlistConfig()
    self._clock = clock
    self._items: TTLMap[str, WatchlistItem] = TTLMap(
      timedelta(hours=self._config.ttl_hours), clock=clock,
    )

  def add_items(
    self,
    items: Iterable[str],
    source: str = "digest",
    digest_id: Optional[str] = None,
  ) -> list[str]:
    """
    添加观察项

    Args:
      items: 原始短语
      source: 来源
      digest_id: 来源摘要 ID

    Returns:
      实际新增的规范化条目
    """
    now = self._clock()
    added = []
    for raw in items or ():
      item = normalize_item(raw, self._config.min_length)
      if item is None or item in self._items:
        continue
      self._items.set(item, WatchlistItem(
        item=item,
        added_at=now,
        source=source,
        digest_id=digest_id,
      ), now)
      added.append(item)

    pruned = self._items.prune(now)
    if added:
      logger.info("观察列表新增 %d 项 (来源: %s): %s", len(added), source, added)
    if pruned:
      logger.debug("观察列表清理过期 %d 项", pruned)
    return added

  def active_items(self) -> list[WatchlistItem]:
    return self._items.values()

  def check_match(
    self,
    content: str,
    tags: Iterable[str] = (),
  ) -> Optional[WatchlistMatch]:
    """
    检查帖子是否命中观察项

    命中条件：观察项与内容互相包含，或与任一标签互相包含
    （标签中的 - 和 _ 视为空格）。空白内容不命中。

    Returns:
      WatchlistMatch，未命中返回 None
    """
    content_lower = (content or "").strip().lower()
    if not content_lower:
      return None
    folded_tags = [t for t in (_fold_tag(str(tag)) for tag in tags or ()) if t]
    # 过短的内容不做反向包含，否则单个字母也会命中
    content_in_item = len(content_lower) >= self._config.min_length

    matches = []
    for item in self.active_items():
      phrase = item.item
      hit = phrase in content_lower or (content_in_item and content_lower in phrase)
      if not hit:
        hit = any(
          phrase in tag or (len(tag) >= self._config.min_length and tag in phrase)
          for tag in folded_tags
        )
      if hit:
        matches.append(phrase)

    if not matches:
      return None

    boost = min(self._config.max_boost, self._config.boost_per_match * len(matches))
    return WatchlistMatch(
      matches=tuple(matches),
      boost_score=boost,
      reason=f"watchlist hit: {', '.join(matches)}",
    )

  def get_state(self) -> dict:
    """
    观察列表快照

    Returns:
      {"active": 条目数, "items": [{item, source, digest_id, added_at, age_hours, expires_in_hours}]}
    """
    now = self._clock()
    ttl_hours = self._config.ttl_hours
    items = []
    for entry in self.active_items():
      age = (now - entry.added_at).total_seconds() / 3600
      items.append({
        "item": entry.item,
        "source": entry.source,
        "digest_id": entry.digest_id,
        "added_at": entry.added_at,
        "age_hours": round(age, 2),
        "expires_in_hours": round(max(0.0, ttl_hours - age), 2),
      })
    return {"active": len(items), "items": items}

  def health(self) -> dict:
    """观察列表健康度：条目数、平均 / 最大年龄、来源分布"""
    now = self._clock()
    entries = self.active_items()
    ages = [(now - e.added_at).total_seconds() / 3600 for e in entries]
    return {
      "active": len(entries),
      "avg_age_hours": round(sum(ages) / len(ages), 2) if ages else 0.0,
      "max_age_hours": round(max(ages), 2) if ages else 0.0,
      "sources": dict(Counter(e.source for e in entries)),
    }

  def prune(self) -> int:
    return self._items.prune()
