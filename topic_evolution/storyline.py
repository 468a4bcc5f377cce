"""
故事线追踪器
规则打分 → 模型判定（限流 + 缓存）→ 启发式新兴检测 的混合状态机
"""

import hashlib
import logging
import re
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .collaborators import NullClassifier, TextClassifier, parse_storyline_verdict
from .config import StorylineConfig
from .models import (
  EmergenceVerdict, InvalidVerdict, LearnedPattern, ProgressionVerdict,
  StepSource, Storyline, StorylineEvent, StorylineStep, StorylineVerdict,
  TopicKey, TopicModel, UnknownVerdict, normalize_topic,
)
from .prompts import STORYLINE_CLASSIFY_PROMPT
from .ttl import Clock, SlidingWindowCounter, TTLMap

logger = logging.getLogger(__name__)


# 规范推进模式：类别 → 有序阶段列表（枚举顺序决定平票归属）
PROGRESSION_PATTERNS: dict[str, tuple[str, ...]] = {
  "regulatory": ("proposal", "discussion", "opposition", "revision", "vote", "implementation"),
  "technical": ("idea", "design", "development", "testing", "release", "adoption"),
  "market": ("rumor", "speculation", "confirmation", "reaction", "analysis", "conclusion"),
  "community": ("emergence", "discussion", "debate", "consensus", "action", "result"),
}

# 阶段 → 关键词
# "discussion" 同时出现在 regulatory 与 community 中，两者共用下面这一组关键词
PHASE_KEYWORDS: dict[str, tuple[str, ...]] = {
  "proposal": ("propose", "suggest", "idea", "plan", "draft", "introduce"),
  "discussion": ("discuss", "talk", "debate", "conversation", "chat", "forum"),
  "opposition": ("against", "oppose", "criticize", "disagree", "concern", "problem"),
  "revision": ("revise", "change", "update", "modify", "amend", "improve"),
  "vote": ("vote", "poll", "decision", "choose", "elect", "select"),
  "implementation": ("implement", "deploy", "launch", "execute", "build", "create"),
  "idea": ("idea", "concept", "thought", "brainstorm", "inspire", "imagine"),
  "design": ("design", "architecture", "plan", "structure", "blueprint", "model"),
  "development": ("develop", "build", "code", "program", "create", "implement"),
  "testing": ("test", "verify", "check", "validate", "debug", "trial"),
  "release": ("release", "launch", "deploy", "publish", "ship", "available"),
  "adoption": ("adopt", "use", "implement", "integrate", "apply", "follow"),
  "rumor": ("rumor", "hear", "speculate", "whisper", "buzz", "talk"),
  "speculation": ("speculate", "guess", "predict", "expect", "anticipate", "wonder"),
  "confirmation": ("confirm", "verify", "prove", "true", "official", "announce"),
  "reaction": ("react", "respond", "comment", "opinion", "feel", "think"),
  "analysis": ("analyze", "study", "review", "examine", "evaluate", "assess"),
  "conclusion": ("conclude", "final", "end", "result", "outcome", "summary"),
  "emergence": ("emerge", "start", "begin", "new", "appear", "arise"),
  "debate": ("debate", "argue", "dispute", "controversy", "conflict", "divide"),
  "consensus": ("agree", "consensus", "unite", "settle", "decide", "resolve"),
  "action": ("act", "do", "execute", "perform", "implement", "take"),
  "result": ("result", "outcome", "consequence", "effect", "impact", "change"),
}

EMERGENCE_KEYWORDS = (
  "new", "start", "begin", "introduce", "launch", "announce",
  "first", "initial", "emerging", "breaking", "developing",
)

_RATIONALE_STOPWORDS = frozenset({
  "this", "that", "with", "from", "they", "have", "been", "were", "will", "would",
})


@dataclass(frozen=True)
class RuleMatch:
  """规则打分的最佳匹配"""
  confidence: float = 0.0
  phase: Optional[str] = None
  pattern: Optional[str] = None


def extract_keywords(text: str, limit: int = 5) -> list[str]:
  """
  从模型理由中提取关键词

  小写、按非单词字符切分、保留长度 > 3 且不在停用词表中的词，取前 limit 个。
  """
  words = re.split(r"\W+", (text or "").lower())
  out = []
  for word in words:
    if len(word) > 3 and word not in _RATIONALE_STOPWORDS and word not in out:
      out.append(word)
      if len(out) >= limit:
        break
  return out


class StorylineTracker:
  """
  故事线追踪器

  状态：created → progressing → expired（TTL 清理）/ evicted（超出每话题上限）
  """

  def __init__(
    self,
    classifier: Optional[TextClassifier] = None,
    config: Optional[StorylineConfig] = None,
    clock: Clock = datetime.now,
  ):
    """
    Args:
      classifier: 文本分类协作者，None 时不调用模型
      config: 配置
      clock: 时钟函数
    """
    self._classifier: TextClassifier = classifier or NullClassifier()
    self._config = config or StorylineConfig()
    self._clock = clock

    self._ttl = timedelta(days=self._config.ttl_days)
    self._storylines: dict[TopicKey, TTLMap[str, Storyline]] = {}
    self._topic_models: dict[TopicKey, TopicModel] = {}
    self._verdict_cache: TTLMap[str, StorylineVerdict] = TTLMap(
      timedelta(hours=self._config.cache_ttl_hours), clock=clock,
    )
    self._limiter = SlidingWindowCounter(
      self._config.rate_limit_per_hour, timedelta(hours=1), clock=clock,
    )

    self._model_calls = 0
    self._model_failures = 0

  @property
  def model_enabled(self) -> bool:
    return self._config.model_enabled and self._classifier.available

  # ============================================================
  # 查询
  # ============================================================

  def get_topic_model(self, topic: TopicKey) -> TopicModel:
    model = self._topic_models.get(topic)
    if model is None:
      model = TopicModel(last_updated=self._clock())
      self._topic_models[topic] = model
    return model

  def get_storylines(self, topic: TopicKey) -> list[Storyline]:
    """话题的存活故事线，按最后更新时间升序"""
    table = self._storylines.get(topic)
    if table is None:
      return []
    return sorted(table.values(), key=lambda s: s.last_updated)

  def get_storyline(self, storyline_id: str) -> Optional[Storyline]:
    for table in self._storylines.values():
      storyline = table.get(storyline_id)
      if storyline is not None:
        return storyline
    return None

  def active_count(self) -> int:
    return sum(len(table.values()) for table in self._storylines.values())

  # ============================================================
  # 规则打分
  # ============================================================

  def score_rules(self, content_lower: str, topic_model: TopicModel) -> RuleMatch:
    """
    规则打分

    规范模式：命中关键词数 / 关键词总数 + 话题模型置信度 × topic_model_boost（上限 1）
    学习模式：命中关键词数 / 关键词总数（不叠加）
    只有严格更高的分数才替换当前最佳，平票保留先枚举到的匹配。
    """
    best = RuleMatch()
    boost = topic_model.confidence * self._config.topic_model_boost

    for pattern_name, phases in PROGRESSION_PATTERNS.items():
      for phase in phases:
        keywords = PHASE_KEYWORDS.get(phase, ())
        if not keywords:
          continue
        matches = sum(1 for kw in keywords if kw in content_lower)
        confidence = min(1.0, matches / len(keywords) + boost)
        if confidence > best.confidence:
          best = RuleMatch(confidence, phase, pattern_name)

    for learned in topic_model.patterns:
      if not learned.keywords:
        continue
      matches = sum(1 for kw in learned.keywords if kw in content_lower)
      confidence = matches / len(learned.keywords)
      if confidence > best.confidence:
        best = RuleMatch(confidence, learned.phase, "learned")

    return best

  def detect_emergence(self, content_lower: str) -> float:
    """新兴关键词启发式，置信度 = 命中数 / emergence_divisor（上限 1）"""
    matches = sum(1 for kw in EMERGENCE_KEYWORDS if kw in content_lower)
    return min(1.0, matches / self._config.emergence_divisor)

  # ============================================================
  # 主流程
  # ============================================================

  async def analyze(
    self,
    topic: TopicKey,
    content: str,
    timestamp: Optional[datetime] = None,
  ) -> StorylineEvent:
    """
    分析一条帖子对某个话题故事线的作用

    调用方需保证同一话题的 analyze 串行执行。

    Args:
      topic: 话题键
      content: 帖子内容
      timestamp: 帖子时间，默认取时钟

    Returns:
      StorylineEvent，未识别时 type 为 "unknown"
    """
    if not topic or not content:
      return StorylineEvent.unknown(topic or "")

    timestamp = timestamp or self._clock()
    content_lower = content.lower()
    topic_model = self.get_topic_model(topic)

    # 1. 规则打分
    rule = self.score_rules(content_lower, topic_model)
    if rule.confidence >= self._config.rule_threshold and rule.phase:
      storyline = self._find_or_create(topic, rule.phase, timestamp)
      self._advance(storyline, rule.phase, rule.confidence, StepSource.RULE, timestamp)
      logger.debug(
        "规则判定故事线推进 %s → %s (%s, %.2f)",
        topic, rule.phase, rule.pattern, rule.confidence,
      )
      return StorylineEvent(
        type="progression",
        topic=topic,
        phase=rule.phase,
        confidence=rule.confidence,
        source=StepSource.RULE.value,
        storyline_id=storyline.id,
        pattern=rule.pattern,
      )

    # 2. 模型判定
    if self.model_enabled:
      verdict = await self._consult_model(topic, content, topic_model, rule)
      if isinstance(verdict, (ProgressionVerdict, EmergenceVerdict)):
        return self._apply_verdict(topic, verdict, timestamp)
      if verdict is not None:
        logger.debug("模型未给出可用判定 (%s): %s", topic, verdict)

    # 3. 启发式新兴检测
    confidence = self.detect_emergence(content_lower)
    if confidence >= self._config.novelty_threshold:
      storyline = self._create(topic, "emergence", timestamp)
      logger.debug("启发式检测到新兴故事线 %s (%.2f)", topic, confidence)
      return StorylineEvent(
        type="emergence",
        topic=topic,
        phase="emergence",
        confidence=confidence,
        source="heuristic",
        storyline_id=storyline.id,
      )

    return StorylineEvent.unknown(topic)

  async def analyze_post(
    self,
    content: str,
    topics: Iterable[str],
    timestamp: Optional[datetime] = None,
  ) -> list[StorylineEvent]:
    """
    对帖子的每个话题分别分析

    Returns:
      事件列表，全部未识别时返回单个 unknown 事件
    """
    events = []
    seen = set()
    for raw in topics or ():
      topic = normalize_topic(raw)
      if topic is None or topic in seen:
        continue
      seen.add(topic)
      event = await self.analyze(topic, content, timestamp)
      if event.type != "unknown":
        events.append(event)
    return events or [StorylineEvent.unknown("")]

  # ============================================================
  # 模型判定
  # ============================================================

  def _verdict_key(self, topic: TopicKey, content: str) -> str:
    return hashlib.md5(f"{content[:500]}{topic}".encode("utf-8")).hexdigest()

  def _build_prompt(
    self,
    topic: TopicKey,
    content: str,
    topic_model: TopicModel,
    rule: RuleMatch,
  ) -> str:
    known = "\n".join(
      f"- {name}: {' → '.join(phases)}" for name, phases in PROGRESSION_PATTERNS.items()
    )
    learned = "\n".join(
      f"- {p.phase}: {', '.join(p.keywords)}" for p in topic_model.patterns
    ) or "none"
    return STORYLINE_CLASSIFY_PROMPT.format(
      topic=topic,
      known_patterns=known,
      learned_patterns=learned,
      rule_confidence=f"{rule.confidence:.2f}",
      rule_phase=rule.phase or "none",
      content=content[:500],
    )

  async def _consult_model(
    self,
    topic: TopicKey,
    content: str,
    topic_model: TopicModel,
    rule: RuleMatch,
  ) -> Optional[StorylineVerdict]:
    """
    查询模型判定

    先查缓存，再检查额度；每次实际发起的调用都计入额度。
    调用失败返回 None。
    """
    key = self._verdict_key(topic, content)
    cached = self._verdict_cache.get(key)
    if cached is not None:
      return cached

    if not self._limiter.try_acquire():
      logger.debug("故事线模型调用超出额度，跳过 (%s)", topic)
      return None

    self._model_calls += 1
    try:
      text = await self._classifier.classify(
        self._build_prompt(topic, content, topic_model, rule),
        max_tokens=self._config.model_max_tokens,
        temperature=self._config.model_temperature,
      )
    except Exception as e:
      self._model_failures += 1
      logger.debug("故事线模型调用失败 (%s): %s", topic, e)
      return None

    verdict = parse_storyline_verdict(text)
    if isinstance(verdict, InvalidVerdict):
      self._model_failures += 1
      return verdict

    self._verdict_cache.set(key, verdict)
    if isinstance(verdict, (ProgressionVerdict, EmergenceVerdict)):
      self._learn(topic, verdict)
    return verdict

  def _apply_verdict(
    self,
    topic: TopicKey,
    verdict: StorylineVerdict,
    timestamp: datetime,
  ) -> StorylineEvent:
    storyline = self._find_or_create(topic, verdict.phase, timestamp)
    self._advance(
      storyline, verdict.phase, verdict.confidence, StepSource.MODEL, timestamp,
      rationale=verdict.rationale,
    )
    kind = "progression" if isinstance(verdict, ProgressionVerdict) else "emergence"
    logger.debug("模型判定故事线 %s %s → %s (%.2f)", kind, topic, verdict.phase, verdict.confidence)
    return StorylineEvent(
      type=kind,
      topic=topic,
      phase=verdict.phase,
      confidence=verdict.confidence,
      source=StepSource.MODEL.value,
      storyline_id=storyline.id,
      pattern=verdict.pattern or None,
      rationale=verdict.rationale,
    )

  def _learn(self, topic: TopicKey, verdict: StorylineVerdict) -> None:
    """把模型判定写回话题模型；novel 模式时从理由中学习关键词"""
    model = self.get_topic_model(topic)
    now = self._clock()

    if verdict.pattern.strip().lower() == "novel" and verdict.rationale:
      known = {p.phase for p in model.patterns}
      keywords = extract_keywords(verdict.rationale)
      if keywords and verdict.phase not in known:
        model.patterns.append(LearnedPattern(
          phase=verdict.phase,
          keywords=keywords,
          confidence=verdict.confidence,
          last_seen=now,
        ))
        logger.debug("话题 %s 学到新模式 %s: %s", topic, verdict.phase, keywords)

    model.confidence = max(
      model.confidence,
      verdict.confidence * self._config.learned_confidence_factor,
    )
    model.last_updated = now

  # ============================================================
  # 故事线表
  # ============================================================

  def _table(self, topic: TopicKey) -> TTLMap[str, Storyline]:
    table = self._storylines.get(topic)
    if table is None:
      table = TTLMap(self._ttl, clock=self._clock)
      self._storylines[topic] = table
    return table

  def _find_or_create(self, topic: TopicKey, phase: str, timestamp: datetime) -> Storyline:
    """取该话题最近更新的存活故事线，没有则新建"""
    live = self.get_storylines(topic)
    if live:
      return live[-1]
    return self._create(topic, phase, timestamp)

  def _create(self, topic: TopicKey, phase: str, timestamp: datetime) -> Storyline:
    table = self._table(topic)
    table.prune()
    while len(table) >= self._config.max_per_topic:
      oldest = min(table.values(), key=lambda s: s.last_updated)
      table.pop(oldest.id)
      logger.debug("故事线超出上限，淘汰 %s", oldest.id)

    storyline_id = f"{topic}_{int(timestamp.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"
    storyline = Storyline(
      id=storyline_id,
      topic=topic,
      current_phase=phase,
      confidence=0.5,
      history=deque(maxlen=self._config.history_limit),
      created_at=timestamp,
      last_updated=timestamp,
    )
    storyline.history.append(StorylineStep(
      phase=phase,
      confidence=0.5,
      source=StepSource.CREATION,
      timestamp=timestamp,
    ))
    table.set(storyline_id, storyline, timestamp)
    return storyline

  def _advance(
    self,
    storyline: Storyline,
    phase: str,
    confidence: float,
    source: StepSource,
    timestamp: datetime,
    rationale: str = "",
  ) -> None:
    storyline.current_phase = phase
    storyline.confidence = max(storyline.confidence, confidence)
    storyline.last_updated = max(storyline.last_updated, timestamp)
    storyline.history.append(StorylineStep(
      phase=phase,
      confidence=confidence,
      source=source,
      timestamp=timestamp,
      rationale=rationale,
    ))
    self._table(storyline.topic).touch(storyline.id, storyline.last_updated)

  # ============================================================
  # 维护
  # ============================================================

  def refresh_models(self) -> dict:
    """
    周期性维护

    - 不活跃超过 model_decay_days 的话题模型置信度乘以衰减因子，低于下限删除
    - 清理过期故事线与过期模型缓存

    Returns:
      各项清理数量
    """
    now = self._clock()
    decay_after = timedelta(days=self._config.model_decay_days)

    decayed = 0
    removed_models = []
    for topic, model in self._topic_models.items():
      if now - model.last_updated > decay_after:
        model.confidence *= self._config.model_decay_factor
        decayed += 1
        if model.confidence < self._config.model_confidence_floor:
          removed_models.append(topic)
    for topic in removed_models:
      del self._topic_models[topic]

    expired = 0
    for topic in list(self._storylines):
      expired += self._storylines[topic].prune(now)
      if not len(self._storylines[topic]):
        del self._storylines[topic]

    cache_pruned = self._verdict_cache.prune(now)

    if decayed or removed_models or expired or cache_pruned:
      logger.info(
        "故事线维护: 衰减模型 %d, 删除模型 %d, 过期故事线 %d, 清理缓存 %d",
        decayed, len(removed_models), expired, cache_pruned,
      )
    return {
      "decayed_models": decayed,
      "removed_models": len(removed_models),
      "expired_storylines": expired,
      "pruned_cache": cache_pruned,
    }

  def stats(self) -> dict:
    return {
      "active_storylines": self.active_count(),
      "topic_models": len(self._topic_models),
      "model_cache_size": len(self._verdict_cache),
      "model_calls": self._model_calls,
      "model_failures": self._model_failures,
      "remaining_call_budget": self._limiter.remaining(),
      "model_enabled": self.model_enabled,
    }
