"""
新鲜度惩罚测试
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from topic_evolution.config import FreshnessConfig
from topic_evolution.digests import DigestBuffer
from topic_evolution.freshness import FreshnessScorer, staleness
from topic_evolution.models import (
  EvolutionAnalysis, NarrativeDigest, Phase, StorylineAdvancement, WatchlistMatch,
)


NOW = datetime(2024, 5, 10, 12, 0, 0)
CFG = FreshnessConfig()


def _clock() -> datetime:
  return NOW


def _buffer(*entries) -> DigestBuffer:
  """entries: (hours_ago, tags)"""
  buffer = DigestBuffer(clock=_clock)
  for hours_ago, tags in entries:
    buffer.append(NarrativeDigest(
      headline="digest",
      tags=tuple(tags),
      timestamp=NOW - timedelta(hours=hours_ago),
    ))
  return buffer


def _evolution(novel: bool = False, change: bool = False) -> EvolutionAnalysis:
  return EvolutionAnalysis(
    subtopic="bitcoin-price",
    is_novel_angle=novel,
    is_phase_change=change,
    phase=Phase.SPECULATION,
    evolution_score=0.5,
  )


def test_staleness_monotonic() -> None:
  """提及越多越陈旧，越久以前越不陈旧"""
  assert staleness(1, 2, CFG) < staleness(3, 2, CFG) < staleness(5, 2, CFG)
  assert staleness(5, 2, CFG) == staleness(9, 2, CFG)
  assert staleness(3, 2, CFG) > staleness(3, 12, CFG) > staleness(3, 20, CFG)
  assert staleness(0, 1, CFG) == 0.0
  assert staleness(3, None, CFG) == 0.0
  assert staleness(3, 30, CFG) == 0.0


def test_penalty_bounds() -> None:
  buffer = _buffer(*[(h, ["bitcoin"]) for h in range(1, 8)])
  scorer = FreshnessScorer(buffer, clock=_clock)
  penalty = scorer.compute_penalty(["bitcoin"])
  assert 0.0 <= penalty <= CFG.max_penalty
  assert penalty == CFG.max_penalty


def test_penalty_components() -> None:
  """单条 12 小时前的摘要：0.5 × (0.25 + 0.35 × 0.2) = 0.16，标签重叠 +0.05"""
  buffer = _buffer((12, ["bitcoin"]))
  scorer = FreshnessScorer(buffer, clock=_clock)

  base = scorer.compute_penalty(["Bitcoin"])
  assert abs(base - 0.21) < 1e-9

  novel = scorer.compute_penalty(["bitcoin"], evolution=_evolution(novel=True))
  assert abs(novel - 0.105) < 1e-9

  shifted = scorer.compute_penalty(["bitcoin"], evolution=_evolution(change=True))
  assert abs(shifted - 0.105) < 1e-9

  advancement = StorylineAdvancement(True, (), False)
  advanced = scorer.compute_penalty(["bitcoin"], advancement=advancement)
  assert abs(advanced - 0.11) < 1e-9

  match = WatchlistMatch(("relay performance",), 0.2, "watchlist hit")
  both = scorer.compute_penalty(
    ["bitcoin"], evolution=_evolution(novel=True), watchlist_match=match,
  )
  assert abs(both - 0.005) < 1e-9


def test_penalty_never_negative() -> None:
  buffer = _buffer((20, ["bitcoin"]))
  scorer = FreshnessScorer(buffer, clock=_clock)
  advancement = StorylineAdvancement(False, ("x",), False)
  # 最近标签仍含 bitcoin，但推进信号把惩罚压到 0 以下后截断
  assert scorer.compute_penalty(
    ["bitcoin"], evolution=_evolution(novel=True), advancement=advancement,
  ) == 0.0


def test_inactive_advancement_does_not_reduce() -> None:
  buffer = _buffer((12, ["bitcoin"]))
  scorer = FreshnessScorer(buffer, clock=_clock)
  idle = StorylineAdvancement(False, (), False)
  assert scorer.compute_penalty(["bitcoin"], advancement=idle) == scorer.compute_penalty(["bitcoin"])


def test_unseen_topic_has_no_penalty() -> None:
  buffer = _buffer((1, ["bitcoin"]), (2, ["nostr"]))
  scorer = FreshnessScorer(buffer, clock=_clock)
  assert scorer.compute_penalty(["lightning"]) == 0.0
  assert scorer.compute_penalty([]) == 0.0
  assert scorer.compute_penalty(["", "  "]) == 0.0


def test_max_over_topics() -> None:
  buffer = _buffer((1, ["bitcoin"]), (1, ["bitcoin"]), (23, ["nostr"]))
  scorer = FreshnessScorer(buffer, clock=_clock)
  combined = scorer.compute_penalty(["nostr", "bitcoin"])
  assert combined == scorer.compute_penalty(["bitcoin"])
  assert combined > scorer.compute_penalty(["nostr"])


def test_disabled_returns_zero() -> None:
  buffer = _buffer((1, ["bitcoin"]))
  scorer = FreshnessScorer(buffer, FreshnessConfig(enabled=False), clock=_clock)
  assert scorer.compute_penalty(["bitcoin"]) == 0.0
