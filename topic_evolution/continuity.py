"""
连续性分析
对最近几条叙事摘要做差分：反复主题、新兴 / 降温线索、优先级与语气走向
"""

import logging
import re
from collections import Counter
from typing import Iterable, Optional, Sequence

from .models import (
  PRIORITY_RANK, ContinuityReport, NarrativeDigest, StorylineAdvancement,
)

logger = logging.getLogger(__name__)


def _lower_tags(digest: NarrativeDigest) -> list[str]:
  """摘要标签（小写、去重、保序）"""
  seen: list[str] = []
  for tag in digest.tags:
    t = str(tag).strip().lower()
    if t and t not in seen:
      seen.append(t)
  return seen


def contains_term(text: str, term: str) -> bool:
  """term 作为完整词组出现在 text 中（两侧不是单词字符）"""
  if not term or not text:
    return False
  pattern = r"(?<!\w)" + re.escape(term) + r"(?!\w)"
  return re.search(pattern, text) is not None


def _overlaps(a: str, b: str) -> bool:
  return bool(a) and bool(b) and (a in b or b in a)


def analyze_continuity(
  digests: Sequence[NarrativeDigest],
  lookback: int = 3,
) -> Optional[ContinuityReport]:
  """
  跨摘要连续性分析

  Args:
    digests: 按时间升序的摘要序列
    lookback: 分析最近多少条

  Returns:
    ContinuityReport，少于 2 条摘要时返回 None
  """
  recent = list(digests)[-max(lookback, 2):] if digests else []
  if len(recent) < 2:
    return None

  first, latest = recent[0], recent[-1]
  earlier = recent[:-1]
  tag_lists = [_lower_tags(d) for d in recent]

  # 反复主题：出现在 ≥2 条摘要中，按频次降序
  counts: Counter = Counter()
  for tags in tag_lists:
    counts.update(tags)
  recurring = tuple(tag for tag, n in counts.most_common() if n >= 2)

  # 优先级走向
  delta = (
    PRIORITY_RANK.get(str(latest.priority).lower(), 2)
    - PRIORITY_RANK.get(str(first.priority).lower(), 2)
  )
  if delta > 0:
    priority_trend = "escalating"
  elif delta < 0:
    priority_trend = "de-escalating"
  else:
    priority_trend = "stable"

  # 早先观察项在最新摘要的标签 / 要点中再次出现
  latest_tags = tag_lists[-1]
  latest_text = latest_tags + [str(i).lower() for i in latest.insights]
  follow_up: list[str] = []
  for digest in earlier:
    for item in digest.watchlist:
      phrase = str(item).strip().lower()
      if phrase and phrase not in follow_up and any(_overlaps(phrase, t) for t in latest_text):
        follow_up.append(phrase)

  # 语气走向
  tones = [d.tone.strip().lower() for d in recent if d.tone and d.tone.strip()]
  tone_progression = None
  if len(tones) >= 2 and tones[0] != tones[-1]:
    tone_progression = (tones[0], tones[-1])

  # 新兴 / 降温线索
  earlier_tags: list[str] = []
  for tags in tag_lists[:-1]:
    earlier_tags.extend(t for t in tags if t not in earlier_tags)
  emerging = tuple(t for t in latest_tags if t not in earlier_tags)
  cooling = tuple(t for t in earlier_tags if t not in latest_tags)

  parts = []
  if recurring:
    parts.append(f"Recurring themes: {', '.join(recurring[:5])}")
  if priority_trend != "stable":
    parts.append(f"Priority {priority_trend}")
  if follow_up:
    parts.append(f"Watchlist follow-up: {', '.join(follow_up)}")
  if tone_progression:
    parts.append(f"Tone shift: {tone_progression[0]} → {tone_progression[1]}")
  if emerging:
    parts.append(f"New threads: {', '.join(emerging[:5])}")
  if cooling:
    parts.append(f"Cooling: {', '.join(cooling[:5])}")

  return ContinuityReport(
    recurring_themes=recurring,
    priority_trend=priority_trend,
    watchlist_follow_up=tuple(follow_up),
    tone_progression=tone_progression,
    emerging_threads=emerging,
    cooling_threads=cooling,
    summary=" | ".join(parts),
    digests_analyzed=len(recent),
  )


def check_storyline_advancement(
  digests: Sequence[NarrativeDigest],
  content: str,
  topics: Iterable[str] = (),
  lookback: int = 3,
) -> Optional[StorylineAdvancement]:
  """
  判断帖子是否推进了近期摘要中的故事线

  - 推进反复主题：反复主题作为完整词出现在内容中，或等于某个话题
  - 观察项命中：窗口内摘要的观察项出现在内容中，或等于某个话题
  - 新兴线索：最新摘要的新标签出现在内容中，或等于某个话题

  Returns:
    StorylineAdvancement，摘要不足 2 条时返回 None
  """
  report = analyze_continuity(digests, lookback)
  if report is None:
    return None

  text = (content or "").lower()
  topic_set = {str(t).strip().lower() for t in topics or () if str(t).strip()}

  def hit(term: str) -> bool:
    return term in topic_set or contains_term(text, term)

  advances = any(hit(theme) for theme in report.recurring_themes)

  matches: list[str] = []
  for digest in list(digests)[-max(lookback, 2):]:
    for item in digest.watchlist:
      phrase = str(item).strip().lower()
      if phrase and phrase not in matches and hit(phrase):
        matches.append(phrase)

  emerging = any(hit(thread) for thread in report.emerging_threads)

  if advances or matches or emerging:
    logger.debug(
      "故事线推进: 主题=%s 观察项=%s 新兴=%s", advances, matches, emerging,
    )
  return StorylineAdvancement(
    advances_recurring_theme=advances,
    watchlist_matches=tuple(matches),
    is_emerging_thread=emerging,
  )
