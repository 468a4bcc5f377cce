"""
故事线追踪器测试

覆盖：规则打分与平票、启发式新兴、模型判定（缓存 / 限流 / 失败回落）、
模式学习、每话题上限、TTL 清理、话题模型衰减。
"""

import asyncio
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from topic_evolution.config import StorylineConfig
from topic_evolution.exceptions import ClassifierError
from topic_evolution.models import StepSource, normalize_topic
from topic_evolution.storyline import StorylineTracker, extract_keywords


NOW = datetime(2024, 5, 10, 12, 0, 0)
BTC = normalize_topic("bitcoin")


class _Clock:
  def __init__(self, start: datetime):
    self.now = start

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **kwargs) -> None:
    self.now += timedelta(**kwargs)


class _FakeClassifier:
  """固定返回同一文本（或抛出异常）的分类器，记录调用次数"""

  available = True

  def __init__(self, response):
    self.response = response
    self.calls = 0

  async def classify(self, prompt, max_tokens=200, temperature=0.1):
    self.calls += 1
    if isinstance(self.response, Exception):
      raise self.response
    return self.response


def _verdict(**fields) -> str:
  return json.dumps(fields)


def test_rule_tie_keeps_first_pattern() -> None:
  """discussion 同时属于 regulatory 与 community，平票时归属先枚举的 regulatory"""
  tracker = StorylineTracker(clock=_Clock(NOW))
  event = asyncio.run(tracker.analyze(
    BTC, "we need to discuss and debate this in the forum chat",
  ))

  assert event.type == "progression"
  assert event.source == "rule"
  assert event.phase == "discussion"
  assert event.pattern == "regulatory"
  # 4/6 命中 + 0.5 × 0.2 话题模型加成
  assert abs(event.confidence - (4 / 6 + 0.1)) < 1e-9


def test_rule_progression_reuses_storyline() -> None:
  tracker = StorylineTracker(clock=_Clock(NOW))

  async def run():
    first = await tracker.analyze(BTC, "let's discuss it on the forum chat")
    second = await tracker.analyze(BTC, "we will vote in the poll, a final decision")
    return first, second

  first, second = asyncio.run(run())
  assert first.storyline_id == second.storyline_id
  assert first.storyline_id.startswith("bitcoin_")

  storyline = tracker.get_storyline(first.storyline_id)
  assert storyline.current_phase == "vote"
  assert [step.source for step in storyline.history] == [
    StepSource.CREATION, StepSource.RULE, StepSource.RULE,
  ]
  assert storyline.confidence >= first.confidence


def test_heuristic_emergence() -> None:
  tracker = StorylineTracker(clock=_Clock(NOW))
  event = asyncio.run(tracker.analyze(
    BTC, "Breaking: new project launch announced, first of its kind",
  ))
  assert event.type == "emergence"
  assert event.source == "heuristic"
  assert event.confidence == 1.0
  assert tracker.get_storyline(event.storyline_id).current_phase == "emergence"


def test_unrelated_content_is_unknown() -> None:
  tracker = StorylineTracker(clock=_Clock(NOW))
  event = asyncio.run(tracker.analyze(BTC, "lovely weather today"))
  assert event.type == "unknown"
  assert event.storyline_id is None
  assert tracker.active_count() == 0


def test_model_progression_learns_novel_pattern() -> None:
  fake = _FakeClassifier(_verdict(
    type="progression",
    phase="Mobilization",
    confidence=0.9,
    rationale="community members organizing binding vote",
    pattern="novel",
  ))
  tracker = StorylineTracker(fake, clock=_Clock(NOW))

  event = asyncio.run(tracker.analyze(BTC, "members are rallying quietly"))
  assert event.type == "progression"
  assert event.source == "model"
  assert event.phase == "mobilization"
  assert fake.calls == 1

  model = tracker.get_topic_model(BTC)
  assert [p.keywords for p in model.patterns] == [
    ["community", "members", "organizing", "binding", "vote"],
  ]
  assert abs(model.confidence - 0.72) < 1e-9

  # 学到的模式参与后续规则打分
  learned = asyncio.run(tracker.analyze(BTC, "community members organizing a vote"))
  assert learned.source == "rule"
  assert learned.pattern == "learned"
  assert learned.phase == "mobilization"
  assert abs(learned.confidence - 0.8) < 1e-9
  assert fake.calls == 1


def test_model_verdict_is_cached() -> None:
  fake = _FakeClassifier(_verdict(type="unknown", confidence=0.2))
  tracker = StorylineTracker(fake, clock=_Clock(NOW))

  async def run():
    return [await tracker.analyze(BTC, "lovely weather today") for _ in range(3)]

  events = asyncio.run(run())
  assert all(e.type == "unknown" for e in events)
  assert fake.calls == 1


def test_model_calls_are_rate_limited() -> None:
  fake = _FakeClassifier(_verdict(type="unknown", confidence=0.1))
  tracker = StorylineTracker(
    fake, StorylineConfig(rate_limit_per_hour=2), clock=_Clock(NOW),
  )

  async def run():
    for i in range(5):
      await tracker.analyze(BTC, f"lovely weather today #{i}")

  asyncio.run(run())
  assert fake.calls == 2
  assert tracker.stats()["remaining_call_budget"] == 0


def test_malformed_response_falls_through_to_heuristic() -> None:
  """无法解析的返回不缓存，回落到启发式新兴检测"""
  fake = _FakeClassifier("sorry, I cannot help with that")
  tracker = StorylineTracker(fake, clock=_Clock(NOW))

  async def run():
    first = await tracker.analyze(BTC, "Breaking: new launch, first ever")
    second = await tracker.analyze(BTC, "Breaking: new launch, first ever")
    return first, second

  first, second = asyncio.run(run())
  assert first.type == second.type == "emergence"
  assert first.source == "heuristic"
  assert fake.calls == 2
  assert tracker.stats()["model_failures"] == 2


def test_invalid_verdict_type_falls_through() -> None:
  fake = _FakeClassifier(_verdict(type="sideways", phase="x", confidence=0.9))
  tracker = StorylineTracker(fake, clock=_Clock(NOW))
  event = asyncio.run(tracker.analyze(BTC, "lovely weather today"))
  assert event.type == "unknown"


def test_classifier_error_falls_through() -> None:
  fake = _FakeClassifier(ClassifierError("timeout"))
  tracker = StorylineTracker(fake, clock=_Clock(NOW))
  event = asyncio.run(tracker.analyze(BTC, "Breaking: new launch, first ever"))
  assert event.type == "emergence"
  assert event.source == "heuristic"


def test_model_disabled_never_calls_classifier() -> None:
  fake = _FakeClassifier(_verdict(type="unknown", confidence=0.1))
  tracker = StorylineTracker(
    fake, StorylineConfig(model_enabled=False), clock=_Clock(NOW),
  )
  asyncio.run(tracker.analyze(BTC, "lovely weather today"))
  assert fake.calls == 0
  assert not tracker.model_enabled


def test_max_per_topic_evicts_least_recent() -> None:
  clock = _Clock(NOW)
  tracker = StorylineTracker(config=StorylineConfig(max_per_topic=2), clock=clock)

  async def run():
    ids = []
    for _ in range(3):
      event = await tracker.analyze(BTC, "Breaking: new launch, first ever")
      ids.append(event.storyline_id)
      clock.advance(minutes=1)
    return ids

  ids = asyncio.run(run())
  assert len(set(ids)) == 3
  assert tracker.active_count() == 2
  assert tracker.get_storyline(ids[0]) is None
  assert [s.id for s in tracker.get_storylines(BTC)] == ids[1:]


def test_storylines_expire_after_ttl() -> None:
  clock = _Clock(NOW)
  tracker = StorylineTracker(clock=clock)
  event = asyncio.run(tracker.analyze(BTC, "Breaking: new launch, first ever"))

  clock.advance(days=6)
  assert tracker.get_storyline(event.storyline_id) is not None

  clock.advance(days=2)
  result = tracker.refresh_models()
  assert result["expired_storylines"] == 1
  assert tracker.active_count() == 0
  assert tracker.get_storyline(event.storyline_id) is None


def test_topic_model_decay_and_removal() -> None:
  clock = _Clock(NOW)
  tracker = StorylineTracker(clock=clock)
  model = tracker.get_topic_model(BTC)
  model.confidence = 0.105

  clock.advance(days=29)
  assert tracker.refresh_models()["decayed_models"] == 0

  clock.advance(days=2)
  result = tracker.refresh_models()
  assert result["decayed_models"] == 1
  assert result["removed_models"] == 1
  assert tracker.stats()["topic_models"] == 0


def test_analyze_post_dedupes_topics() -> None:
  tracker = StorylineTracker(clock=_Clock(NOW))

  async def run():
    events = await tracker.analyze_post(
      "Breaking: new launch, first ever", ["Bitcoin", "bitcoin ", "", None],
    )
    nothing = await tracker.analyze_post("lovely weather today", ["bitcoin"])
    return events, nothing

  events, nothing = asyncio.run(run())
  assert len(events) == 1
  assert events[0].topic == "bitcoin"
  assert [e.type for e in nothing] == ["unknown"]


def test_extract_keywords() -> None:
  assert extract_keywords("This is what they would do with the new vote", 5) == ["what", "vote"]
  assert extract_keywords("", 5) == []
