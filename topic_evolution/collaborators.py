"""
模型协作者适配层
TextClassifier 协议、空实现、LangChain 适配器，以及返回内容的解析
"""

import asyncio
import json
import logging
import re
from typing import Any, Optional, Protocol, runtime_checkable

from langchain_core.language_models import BaseChatModel

from .exceptions import (
  ClassifierError, ClassifierUnavailable, MalformedClassifierResponse,
)
from .models import (
  EmergenceVerdict, InvalidVerdict, ProgressionVerdict, StorylineVerdict,
  UnknownVerdict,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@runtime_checkable
class TextClassifier(Protocol):
  """文本分类协作者：输入 prompt，返回文本"""

  @property
  def available(self) -> bool: ...

  async def classify(
    self,
    prompt: str,
    max_tokens: int = 200,
    temperature: float = 0.1,
  ) -> str: ...


class NullClassifier:
  """空分类器：始终不可用，调用方回落到启发式"""

  available = False

  async def classify(
    self,
    prompt: str,
    max_tokens: int = 200,
    temperature: float = 0.1,
  ) -> str:
    raise ClassifierUnavailable("未配置分类模型")


def extract_text(result: Any) -> str:
  """
  从模型返回值中取出文本

  兼容 str、带 content 属性的消息对象、{"text": ...} 字典。
  """
  if result is None:
    return ""
  if isinstance(result, str):
    return result
  if isinstance(result, dict):
    text = result.get("text", result.get("content", ""))
    return text if isinstance(text, str) else str(text)
  if hasattr(result, "content"):
    content = result.content
    if isinstance(content, list):
      # 多段内容（如 Anthropic）只取文本块
      parts = [
        part.get("text", "") if isinstance(part, dict) else str(part)
        for part in content
      ]
      return "".join(parts)
    return str(content)
  return str(result)


class LangChainClassifier:
  """
  基于 LangChain 聊天模型的分类器

  模型可延迟提供（factory），首次调用时构建；构建失败视为不可用。
  """

  def __init__(
    self,
    model: Optional[BaseChatModel] = None,
    factory: Any = None,
    timeout_seconds: float = 10.0,
  ):
    """
    Args:
      model: 已构建的聊天模型
      factory: 无参可调用对象，返回 BaseChatModel（延迟初始化）
      timeout_seconds: 单次调用超时
    """
    self._model = model
    self._factory = factory
    self._timeout = timeout_seconds
    self._factory_failed = False

  @property
  def available(self) -> bool:
    return self._model is not None or (self._factory is not None and not self._factory_failed)

  def _get_model(self) -> BaseChatModel:
    """获取模型（延迟初始化）"""
    if self._model is None:
      if self._factory is None or self._factory_failed:
        raise ClassifierUnavailable("未配置分类模型")
      try:
        self._model = self._factory()
      except Exception as e:
        self._factory_failed = True
        raise ClassifierUnavailable(f"分类模型初始化失败: {e}") from e
    return self._model

  async def classify(
    self,
    prompt: str,
    max_tokens: int = 200,
    temperature: float = 0.1,
  ) -> str:
    model = self._get_model()
    try:
      bound = model.bind(max_tokens=max_tokens, temperature=temperature)
      result = await asyncio.wait_for(bound.ainvoke(prompt), timeout=self._timeout)
    except asyncio.TimeoutError as e:
      raise ClassifierError(f"分类模型调用超时 ({self._timeout}s)") from e
    except Exception as e:
      raise ClassifierError(f"分类模型调用失败: {e}") from e
    return extract_text(result)


def strip_code_fence(text: str) -> str:
  """去除 markdown 代码块包裹"""
  text = text.strip()
  if text.startswith("```"):
    lines = text.split("\n")
    lines = [l for l in lines if not l.strip().startswith("```")]
    text = "\n".join(lines)
  return text.strip()


def parse_json_object(text: str) -> dict:
  """
  从模型输出中提取第一个 JSON 对象

  Raises:
    MalformedClassifierResponse: 找不到或无法解析
  """
  match = _JSON_OBJECT.search(strip_code_fence(text or ""))
  if match is None:
    raise MalformedClassifierResponse("返回内容中没有 JSON 对象")
  try:
    data = json.loads(match.group(0))
  except json.JSONDecodeError as e:
    raise MalformedClassifierResponse(f"JSON 解析失败: {e}") from e
  if not isinstance(data, dict):
    raise MalformedClassifierResponse("JSON 顶层不是对象")
  return data


def _clamp01(value: Any) -> Optional[float]:
  try:
    number = float(value)
  except (TypeError, ValueError):
    return None
  if number != number:  # NaN
    return None
  return max(0.0, min(1.0, number))


def parse_storyline_verdict(text: str) -> StorylineVerdict:
  """
  将模型返回解析为严格的故事线判定

  约定格式：{type, phase, confidence, rationale, pattern}。
  type 不在 progression / emergence / unknown 之内、缺少必要字段、
  置信度不是数字时都返回 InvalidVerdict。

  Args:
    text: 模型返回文本

  Returns:
    StorylineVerdict
  """
  try:
    data = parse_json_object(text)
  except MalformedClassifierResponse as e:
    return InvalidVerdict(reason=str(e))

  kind = str(data.get("type", "")).strip().lower()
  confidence = _clamp01(data.get("confidence", 0))
  if confidence is None:
    return InvalidVerdict(reason="confidence 不是数字")

  rationale = str(data.get("rationale") or "")
  pattern = str(data.get("pattern") or "")
  phase = data.get("phase")

  if kind == "unknown":
    return UnknownVerdict(confidence=confidence, rationale=rationale)
  if kind not in ("progression", "emergence"):
    return InvalidVerdict(reason=f"未知判定类型: {kind!r}")
  if not isinstance(phase, str) or not phase.strip():
    return InvalidVerdict(reason="缺少 phase")

  phase = phase.strip().lower()
  if kind == "progression":
    return ProgressionVerdict(phase, confidence, rationale, pattern)
  return EmergenceVerdict(phase, confidence, rationale, pattern)


def clean_subtopic_label(text: str, max_length: int = 50) -> Optional[str]:
  """
  清理模型生成的子话题标签

  取首行、去引号、小写、空白转连字符、截断；
  少于 3 个字符或超过 6 个词视为无效。

  Returns:
    清理后的标签，无效返回 None
  """
  if not text:
    return None
  first = strip_code_fence(text).split("\n")[0]
  label = first.strip().strip("\"'`").strip().lower()
  if len(label) < 3 or len(label.split()) > 6:
    return None
  slug = re.sub(r"[^\w$]+", "-", label).replace("_", "-").strip("-")
  slug = slug[:max_length].strip("-")
  if len(slug) < 3:
    return None
  return slug
