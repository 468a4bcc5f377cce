"""
模型提供者
为话题演化的分类任务构建 LangChain 聊天模型，支持多种模型源
"""

import os
import json
from enum import Enum
from pathlib import Path
from typing import Optional

from langchain_core.language_models import BaseChatModel


class ModelType(Enum):
  """模型类型枚举"""
  OPENAI = "openai"
  ANTHROPIC = "anthropic"
  GEMINI = "gemini"
  LOCAL = "local"


# 分类任务默认模型（轻量、低成本）
CLASSIFIER_MODELS = {
  ModelType.OPENAI: "gpt-5-mini",
  ModelType.ANTHROPIC: "claude-haiku-4-5-20251001",
  ModelType.GEMINI: "gemini-2.0-flash",
  ModelType.LOCAL: "Qwen/Qwen3-1.7B",
}

# 密钥名（环境变量名为其大写形式）
_API_KEY_NAMES = {
  ModelType.OPENAI: "openai_api_key",
  ModelType.ANTHROPIC: "anthropic_api_key",
  ModelType.GEMINI: "gemini_api_key",
}

_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
_LOCAL_BASE_URL = "http://localhost:8000/v1"


class ModelProvider:
  """
  模型提供者类
  根据模型类型创建相应的 LangChain 模型实例
  """

  def __init__(self, secrets_path: Optional[Path] = None):
    """
    初始化模型提供者

    Args:
      secrets_path: API密钥配置文件路径，默认为项目根目录下的 secrets/api_keys.json
    """
    if secrets_path is None:
      project_root = Path(__file__).parent.parent
      secrets_path = project_root / "secrets" / "api_keys.json"

    self.secrets_path = Path(secrets_path)
    self._secrets: dict = {}

    if self.secrets_path.exists():
      self._secrets = json.loads(self.secrets_path.read_text(encoding="utf-8"))

  def _get_secret(self, key: str) -> Optional[str]:
    """获取密钥，优先从环境变量获取"""
    env_key = key.upper()
    if env_key in os.environ:
      return os.environ[env_key]
    return self._secrets.get(key)

  def has_credentials(self, model_type: ModelType) -> bool:
    """是否已配置该模型源所需的密钥（本地模型无需密钥）"""
    key_name = _API_KEY_NAMES.get(model_type)
    return key_name is None or bool(self._get_secret(key_name))

  def _require_key(self, model_type: ModelType) -> str:
    key_name = _API_KEY_NAMES[model_type]
    api_key = self._get_secret(key_name)
    if not api_key:
      raise ValueError(
        f"未配置 {model_type.value} API Key，请设置环境变量 {key_name.upper()} "
        f"或在 secrets/api_keys.json 中配置 {key_name}"
      )
    return api_key

  def get_model(
    self,
    model_type: ModelType,
    model_name: Optional[str] = None,
    **kwargs
  ) -> BaseChatModel:
    """
    获取指定类型的模型实例

    Args:
      model_type: 模型类型
      model_name: 模型名称，不指定则使用分类默认模型
      **kwargs: 传递给模型的额外参数

    Returns:
      BaseChatModel 实例

    Raises:
      ValueError: 不支持的模型类型或缺少必要配置时抛出
    """
    name = model_name or CLASSIFIER_MODELS.get(model_type)

    if model_type == ModelType.OPENAI:
      from langchain_openai import ChatOpenAI
      return ChatOpenAI(model=name, api_key=self._require_key(model_type), **kwargs)

    if model_type == ModelType.ANTHROPIC:
      from langchain_anthropic import ChatAnthropic
      return ChatAnthropic(model=name, api_key=self._require_key(model_type), **kwargs)

    if model_type == ModelType.GEMINI:
      # 通过 Google AI 的 OpenAI 兼容接口调用
      from langchain_openai import ChatOpenAI
      return ChatOpenAI(
        model=name,
        api_key=self._require_key(model_type),
        base_url=_GEMINI_BASE_URL,
        **kwargs
      )

    if model_type == ModelType.LOCAL:
      # vllm 等 OpenAI 兼容服务
      from langchain_openai import ChatOpenAI
      return ChatOpenAI(
        model=name,
        api_key="not-needed",
        base_url=self._get_secret("local_base_url") or _LOCAL_BASE_URL,
        **kwargs
      )

    raise ValueError(f"不支持的模型类型: {model_type}")

  @classmethod
  def classifier(
    cls,
    provider: ModelType = ModelType.OPENAI,
    model_name: Optional[str] = None,
    **kwargs
  ) -> BaseChatModel:
    """
    分类用模型

    用途：子话题标签、故事线判定等短输出任务；
    默认低温度、单次重试，调用方自行控制超时。

    Args:
      provider: 模型源，默认 OpenAI (gpt-5-mini)
      model_name: 覆盖默认模型名
    """
    kwargs.setdefault("temperature", 0.1)
    kwargs.setdefault("max_retries", 1)
    return cls().get_model(provider, model_name=model_name, **kwargs)
