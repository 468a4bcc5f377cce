"""
话题簇存储测试
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from topic_evolution.clusters import TopicClusterStore, trend_direction
from topic_evolution.config import ClusterConfig
from topic_evolution.models import Phase, TopicDataPoint, Trend, normalize_topic


NOW = datetime(2024, 5, 10, 12, 0, 0)


def test_normalize_topic_is_case_insensitive() -> None:
  assert normalize_topic("Bitcoin") == normalize_topic(" BITCOIN ") == "bitcoin"
  assert normalize_topic("") is None
  assert normalize_topic("   ") is None
  assert normalize_topic(None) is None


def test_get_or_create_is_idempotent() -> None:
  store = TopicClusterStore()
  key = normalize_topic("bitcoin")
  first = store.get_or_create(key)
  second = store.get_or_create(key)
  assert first is second
  assert store.topic_count() == 1
  assert first.current_phase == Phase.GENERAL


def test_update_tracks_subtopics_and_phase() -> None:
  store = TopicClusterStore()
  key = normalize_topic("bitcoin")
  store.update(key, "bitcoin-price", Phase.SPECULATION, NOW - timedelta(minutes=5), "x" * 500)
  cluster = store.update(key, "bitcoin-adoption", Phase.ADOPTION, NOW)

  assert cluster.subtopics == {"bitcoin-price", "bitcoin-adoption"}
  assert cluster.current_phase == Phase.ADOPTION
  assert cluster.last_mentions["bitcoin-adoption"] == NOW
  assert len(cluster.timeline[0].snippet) == 200


def test_timeline_never_exceeds_cap() -> None:
  """任意多次更新后时间线长度不超过上限，最旧条目先被挤出"""
  store = TopicClusterStore(ClusterConfig(max_entries=5))
  key = normalize_topic("nostr")
  for i in range(12):
    store.update(key, f"angle-{i}", Phase.GENERAL, NOW + timedelta(minutes=i))

  cluster = store.get(key)
  assert len(cluster.timeline) == 5
  assert [e.subtopic for e in cluster.timeline] == [f"angle-{i}" for i in range(7, 12)]


def test_unknown_topic_evolution_is_empty() -> None:
  store = TopicClusterStore()
  evolution = store.get_evolution(normalize_topic("never-seen"), 30, now=NOW)
  assert evolution.data_points == ()
  assert evolution.subtopics == ()
  assert evolution.trend == Trend.STABLE
  assert evolution.current_phase is None


def test_evolution_subtopic_distribution_top_ten() -> None:
  """子话题分布按频次降序，最多 10 个，只统计窗口内"""
  store = TopicClusterStore()
  key = normalize_topic("bitcoin")
  for i in range(12):
    for _ in range(i + 1):
      store.update(key, f"angle-{i}", Phase.GENERAL, NOW - timedelta(hours=1))
  # 窗口外的条目不计入分布
  store.update(key, "ancient", Phase.GENERAL, NOW - timedelta(days=60))

  evolution = store.get_evolution(key, 30, now=NOW)
  assert len(evolution.subtopics) == 10
  assert evolution.subtopics[0] == ("angle-11", 12)
  counts = [n for _, n in evolution.subtopics]
  assert counts == sorted(counts, reverse=True)
  assert "ancient" not in dict(evolution.subtopics)
  assert evolution.subtopic_count == 13


def test_evolution_buckets_timeline_per_day() -> None:
  store = TopicClusterStore()
  key = normalize_topic("bitcoin")
  for day in range(3):
    for _ in range(day + 1):
      store.update(key, "bitcoin-price", Phase.SPECULATION, NOW - timedelta(days=day))

  evolution = store.get_evolution(key, 30, now=NOW)
  assert [p.mentions for p in evolution.data_points] == [3, 2, 1]
  assert evolution.current_phase == Phase.SPECULATION


def test_evolution_prefers_supplied_history() -> None:
  store = TopicClusterStore()
  key = normalize_topic("bitcoin")
  store.update(key, "bitcoin-price", Phase.SPECULATION, NOW)
  history = [
    TopicDataPoint(NOW - timedelta(days=d), mentions=10) for d in range(1, 4)
  ]
  history.append(TopicDataPoint(NOW - timedelta(days=90), mentions=99))

  evolution = store.get_evolution(key, 30, history=history, now=NOW)
  assert len(evolution.data_points) == 3
  assert all(p.mentions == 10 for p in evolution.data_points)


def test_trend_direction() -> None:
  assert trend_direction([1.0] * 7 + [5.0] * 7) == Trend.RISING
  assert trend_direction([5.0] * 7 + [1.0] * 7) == Trend.DECLINING
  assert trend_direction([5.0] * 7 + [5.5] * 7) == Trend.STABLE
  assert trend_direction([3.0]) == Trend.STABLE
  # 没有更早的窗口
  assert trend_direction([1.0, 2.0, 9.0]) == Trend.STABLE
