"""
话题演化输出格式化
将演化、连续性、观察列表状态转换为 prompt 注入文本（无模型请求）
"""

import logging
from typing import Optional

from .models import (
  ContinuityReport, EvolutionAnalysis, HistoryComparison, TopicEvolution,
)

logger = logging.getLogger(__name__)


def format_evolution(analysis: EvolutionAnalysis) -> str:
  """单条帖子的演化分析"""
  lines = [
    f"Angle: {analysis.subtopic} ({analysis.phase.value})",
    f"Evolution score: {analysis.evolution_score:.2f}",
  ]
  if analysis.signals:
    lines.append("Signals: " + "; ".join(analysis.signals))
  return "\n".join(lines)


def format_topic_evolution(evolution: TopicEvolution, max_subtopics: int = 5) -> str:
  """话题演化概览"""
  if not evolution.data_points and not evolution.subtopics:
    return f"{evolution.topic}: no history yet"
  parts = [f"{evolution.topic}: trend {evolution.trend.value}"]
  if evolution.current_phase is not None:
    parts.append(f"phase {evolution.current_phase.value}")
  if evolution.subtopics:
    angles = ", ".join(f"{s} ({n})" for s, n in evolution.subtopics[:max_subtopics])
    parts.append(f"angles: {angles}")
  return "; ".join(parts)


def format_continuity(report: Optional[ContinuityReport]) -> str:
  """
  连续性分析上下文

  Args:
    report: 连续性分析结果，None 表示摘要不足

  Returns:
    文本，无内容时返回空字符串
  """
  if report is None or not report.summary:
    return ""
  return f"Narrative continuity ({report.digests_analyzed} digests): {report.summary}"


def format_watchlist(state: dict, limit: int = 8) -> str:
  """观察列表上下文：按剩余时间升序列出"""
  items = state.get("items") or []
  if not items:
    return ""
  ordered = sorted(items, key=lambda i: i["expires_in_hours"])[:limit]
  lines = ["Watching for follow-ups:"]
  for entry in ordered:
    lines.append(f"- {entry['item']} (expires in {entry['expires_in_hours']:.0f}h)")
  return "\n".join(lines)


def format_history_comparison(comparison: HistoryComparison) -> str:
  """历史对比上下文"""
  parts = []
  if comparison.event_trend and comparison.event_trend.direction != "stable":
    parts.append(
      f"activity {comparison.event_trend.direction} {abs(comparison.event_trend.change):.0f}%"
    )
  if comparison.user_trend and comparison.user_trend.direction != "stable":
    parts.append(
      f"users {comparison.user_trend.direction} {abs(comparison.user_trend.change):.0f}%"
    )
  if comparison.topic_changes.emerging:
    parts.append("new topics: " + ", ".join(comparison.topic_changes.emerging[:5]))
  for bucket, change in comparison.sentiment_shift.items():
    parts.append(f"{bucket} sentiment {'up' if change > 0 else 'down'} {abs(change):.0f}%")
  if comparison.emerging_patterns:
    parts.append("patterns: " + ", ".join(comparison.emerging_patterns))
  if not parts:
    return f"Compared with {comparison.period}: nothing unusual"
  return f"Compared with {comparison.period}: " + "; ".join(parts)
