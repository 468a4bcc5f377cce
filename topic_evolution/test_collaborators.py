"""
模型协作者测试

覆盖：故事线判定解析、标签清理、返回文本提取、
LangChain 适配器（假模型 / 初始化失败 / 调用失败 / 超时）、模型提供者密钥检查。
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from langchain_wrapper import ModelProvider, ModelType
from topic_evolution.collaborators import (
  LangChainClassifier, NullClassifier, TextClassifier, clean_subtopic_label,
  extract_text, parse_json_object, parse_storyline_verdict,
)
from topic_evolution.exceptions import (
  ClassifierError, ClassifierUnavailable, MalformedClassifierResponse,
)
from topic_evolution.models import (
  EmergenceVerdict, InvalidVerdict, ProgressionVerdict, UnknownVerdict,
)


# ============================================================
# 判定解析
# ============================================================

def test_parse_progression_verdict() -> None:
  text = '```json\n{"type": "progression", "phase": "Vote", "confidence": 0.8, "rationale": "poll opened", "pattern": "regulatory"}\n```'
  verdict = parse_storyline_verdict(text)
  assert verdict == ProgressionVerdict("vote", 0.8, "poll opened", "regulatory")


def test_parse_emergence_and_unknown() -> None:
  emergence = parse_storyline_verdict(
    'Sure! {"type": "emergence", "phase": "emergence", "confidence": 1.7}'
  )
  assert isinstance(emergence, EmergenceVerdict)
  assert emergence.confidence == 1.0

  unknown = parse_storyline_verdict('{"type": "unknown", "confidence": 0.1}')
  assert unknown == UnknownVerdict(confidence=0.1, rationale="")


@pytest.mark.parametrize("text", [
  "no json here",
  '{"type": "progression", "confidence": 0.5}',
  '{"type": "progression", "phase": "vote", "confidence": "high"}',
  '{"type": "sideways", "phase": "vote", "confidence": 0.5}',
  '{"type": "progression", "phase": "vote", "confidence": NaN}',
  "{not json}",
])
def test_parse_invalid_verdicts(text) -> None:
  assert isinstance(parse_storyline_verdict(text), InvalidVerdict)


def test_parse_json_object_requires_object() -> None:
  assert parse_json_object('prefix {"a": 1} suffix') == {"a": 1}
  with pytest.raises(MalformedClassifierResponse):
    parse_json_object("[1, 2, 3]")


def test_clean_subtopic_label() -> None:
  assert clean_subtopic_label("`Lightning Fees`") == "lightning-fees"
  assert clean_subtopic_label("ETF approval!\nsecond line") == "etf-approval"
  assert clean_subtopic_label("比特币 价格") == "比特币-价格"
  assert clean_subtopic_label("a") is None
  assert clean_subtopic_label("one two three four five six seven") is None
  assert clean_subtopic_label("") is None
  assert len(clean_subtopic_label("x" * 80, max_length=50)) == 50


def test_extract_text() -> None:
  assert extract_text("plain") == "plain"
  assert extract_text(None) == ""
  assert extract_text({"text": "from dict"}) == "from dict"
  assert extract_text(AIMessage(content="from message")) == "from message"
  blocks = AIMessage(content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}])
  assert extract_text(blocks) == "ab"


# ============================================================
# 分类器
# ============================================================

class _BrokenModel:
  def bind(self, **kwargs):
    return self

  async def ainvoke(self, prompt):
    raise RuntimeError("provider down")


class _HangingModel:
  def bind(self, **kwargs):
    return self

  async def ainvoke(self, prompt):
    await asyncio.sleep(5)
    return "late"


def test_null_classifier() -> None:
  classifier = NullClassifier()
  assert isinstance(classifier, TextClassifier)
  assert not classifier.available
  with pytest.raises(ClassifierUnavailable):
    asyncio.run(classifier.classify("prompt"))


def test_langchain_classifier_with_fake_model() -> None:
  verdict = json.dumps({"type": "unknown", "confidence": 0.2})
  classifier = LangChainClassifier(model=FakeListChatModel(responses=[verdict]))
  assert classifier.available
  text = asyncio.run(classifier.classify("classify this", max_tokens=50, temperature=0.0))
  assert isinstance(parse_storyline_verdict(text), UnknownVerdict)


def test_langchain_classifier_lazy_factory() -> None:
  calls = []

  def factory():
    calls.append(1)
    return FakeListChatModel(responses=["bitcoin fees"])

  classifier = LangChainClassifier(factory=factory)
  assert classifier.available
  assert calls == []
  assert asyncio.run(classifier.classify("label")) == "bitcoin fees"
  asyncio.run(classifier.classify("label again"))
  assert calls == [1]


def test_langchain_classifier_factory_failure() -> None:
  def factory():
    raise ValueError("missing key")

  classifier = LangChainClassifier(factory=factory)
  with pytest.raises(ClassifierUnavailable):
    asyncio.run(classifier.classify("label"))
  assert not classifier.available


def test_langchain_classifier_wraps_errors() -> None:
  classifier = LangChainClassifier(model=_BrokenModel())
  with pytest.raises(ClassifierError):
    asyncio.run(classifier.classify("label"))


def test_langchain_classifier_timeout() -> None:
  classifier = LangChainClassifier(model=_HangingModel(), timeout_seconds=0.01)
  with pytest.raises(ClassifierError, match="超时"):
    asyncio.run(classifier.classify("label"))


# ============================================================
# 模型提供者
# ============================================================

def test_model_provider_requires_key(tmp_path, monkeypatch) -> None:
  monkeypatch.delenv("OPENAI_API_KEY", raising=False)
  provider = ModelProvider(secrets_path=tmp_path / "missing.json")
  assert not provider.has_credentials(ModelType.OPENAI)
  assert provider.has_credentials(ModelType.LOCAL)
  with pytest.raises(ValueError):
    provider.get_model(ModelType.OPENAI)


def test_model_provider_builds_openai_model(tmp_path, monkeypatch) -> None:
  monkeypatch.delenv("OPENAI_API_KEY", raising=False)
  secrets = tmp_path / "api_keys.json"
  secrets.write_text(json.dumps({"openai_api_key": "sk-test"}), encoding="utf-8")

  provider = ModelProvider(secrets_path=secrets)
  model = provider.get_model(ModelType.OPENAI, model_name="gpt-4o-mini")
  assert provider.has_credentials(ModelType.OPENAI)
  assert model.model_name == "gpt-4o-mini"


def test_model_provider_env_takes_precedence(tmp_path, monkeypatch) -> None:
  monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
  provider = ModelProvider(secrets_path=tmp_path / "missing.json")
  assert provider._get_secret("anthropic_api_key") == "from-env"
