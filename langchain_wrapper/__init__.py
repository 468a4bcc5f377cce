"""
langchain_wrapper 模块
提供分类模型的构建入口
"""

from .model_provider import ModelType, ModelProvider, CLASSIFIER_MODELS

__all__ = [
  "ModelType",
  "ModelProvider",
  "CLASSIFIER_MODELS",
]
