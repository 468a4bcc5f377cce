"""
topic_evolution 模块
话题演化追踪：角度时间线、讨论阶段、故事线、观察列表与新鲜度惩罚

单进程内存运行，持久化为可选协作者。
"""

from .config import EvolutionConfig
from .models import (
  Phase,
  TopicKey,
  normalize_topic,
  EvolutionAnalysis,
  NarrativeDigest,
  HistoricalNarrative,
  StorylineEvent,
  StorylineAdvancement,
  TopicEvolution,
  WatchlistMatch,
)
from .collaborators import TextClassifier, NullClassifier, LangChainClassifier
from .persistence import Persistence, NullPersistence, SqlitePersistence
from .settings import Settings
from .engine import TopicEvolutionEngine

__all__ = [
  "EvolutionConfig",
  "Phase",
  "TopicKey",
  "normalize_topic",
  "EvolutionAnalysis",
  "NarrativeDigest",
  "HistoricalNarrative",
  "StorylineEvent",
  "StorylineAdvancement",
  "TopicEvolution",
  "WatchlistMatch",
  "TextClassifier",
  "NullClassifier",
  "LangChainClassifier",
  "Persistence",
  "NullPersistence",
  "SqlitePersistence",
  "Settings",
  "TopicEvolutionEngine",
]
