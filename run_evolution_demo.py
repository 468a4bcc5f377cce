"""
话题演化 Demo
回放叙事摘要与帖子，打印每条帖子的演化分析、故事线事件与新鲜度惩罚

用法:
  python run_evolution_demo.py --digests <摘要JSON> --posts <帖子JSON>

示例:
  python run_evolution_demo.py \
    --digests data/digests.json \
    --posts data/posts.jsonl \
    --model openai

文件格式:
  摘要: JSON 数组，每项含 headline / tags / priority / insights / watchlist / tone / timestamp
  帖子: JSON 数组或每行一个 JSON 对象，每项含 content / topics
  不提供 --posts 时进入交互模式，输入 "话题1,话题2 | 内容"
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

if sys.platform == "win32" and hasattr(sys.stdout, "reconfigure"):
  sys.stdout.reconfigure(encoding="utf-8", errors="replace")
  sys.stderr.reconfigure(encoding="utf-8", errors="replace")

project_root = Path(__file__).parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from langchain_wrapper import ModelProvider, ModelType
from topic_evolution import (
  EvolutionConfig, LangChainClassifier, Settings, SqlitePersistence,
  TopicEvolutionEngine,
)


MODEL_MAP = {
  "openai": ModelType.OPENAI,
  "anthropic": ModelType.ANTHROPIC,
  "gemini": ModelType.GEMINI,
  "local": ModelType.LOCAL,
}


def parse_args():
  parser = argparse.ArgumentParser(
    description="话题演化 Demo — 摘要 + 帖子 → 角度 / 阶段 / 故事线 / 新鲜度",
  )
  parser.add_argument("--digests", default=None, help="叙事摘要 JSON 文件（可选）")
  parser.add_argument("--posts", default=None, help="帖子文件（JSON 数组或 JSONL，可选）")
  parser.add_argument(
    "--model", default="none",
    choices=["none", *MODEL_MAP],
    help="分类模型提供者（默认 none，只用关键词启发式）",
  )
  parser.add_argument("--model-name", default=None, help="指定模型名称（可选）")
  parser.add_argument(
    "--db", default=None,
    help="SQLite 路径（:memory: 为内存库；不指定则不持久化）",
  )
  parser.add_argument(
    "--verbose", action="store_true", default=False,
    help="输出 DEBUG 日志",
  )
  return parser.parse_args()


def _read_json_items(path: str) -> list[dict]:
  """读取 JSON 数组或 JSONL"""
  text = Path(path).read_text(encoding="utf-8").strip()
  if not text:
    return []
  if text.startswith("["):
    return json.loads(text)
  return [json.loads(line) for line in text.splitlines() if line.strip()]


def build_engine(args) -> TopicEvolutionEngine:
  persistence = SqlitePersistence(args.db) if args.db else None
  config = EvolutionConfig.from_settings(Settings())

  classifier = None
  if args.model != "none":
    provider = MODEL_MAP[args.model]
    classifier = LangChainClassifier(
      factory=lambda: ModelProvider.classifier(provider, model_name=args.model_name),
      timeout_seconds=config.storyline.model_timeout_seconds,
    )
  return TopicEvolutionEngine(classifier=classifier, persistence=persistence, config=config)


async def evaluate_post(engine: TopicEvolutionEngine, content: str, topics: list[str]) -> None:
  result = await engine.evaluate_candidate(content, topics)
  events = await engine.track_storylines(content, topics)

  print(f"> {content[:80]}")
  print(f"  话题: {', '.join(topics) or '无'}")
  evolution = result["evolution"]
  if evolution is not None:
    print(
      f"  角度: {evolution.subtopic} | 阶段: {evolution.phase.value}"
      f" | 新角度: {evolution.is_novel_angle} | 演化分: {evolution.evolution_score:.2f}"
    )
  for event in events:
    if event.type != "unknown":
      print(f"  故事线: {event.type} {event.topic} → {event.phase} ({event.source}, {event.confidence:.2f})")
  if result["watchlist"] is not None:
    print(f"  观察列表: {result['watchlist'].reason} (+{result['watchlist_boost']:.2f})")
  advancement = result["advancement"]
  if advancement is not None and advancement.any:
    print(
      f"  推进: 主题={advancement.advances_recurring_theme}"
      f" 观察项={list(advancement.watchlist_matches)} 新兴={advancement.is_emerging_thread}"
    )
  print(f"  新鲜度惩罚: {result['penalty']:.3f}")
  print()


async def _input_loop(engine: TopicEvolutionEngine) -> None:
  """交互模式：每行 "话题1,话题2 | 内容"，/quit 退出"""
  loop = asyncio.get_event_loop()
  while True:
    line = await loop.run_in_executor(None, sys.stdin.readline)
    if not line:
      break
    line = line.strip()
    if not line:
      continue
    if line == "/quit":
      break
    if line == "/stats":
      print(json.dumps(engine.stats(), ensure_ascii=False, indent=2))
      continue
    if "|" in line:
      raw_topics, content = line.split("|", 1)
    else:
      raw_topics, content = "", line
    topics = [t.strip() for t in raw_topics.split(",") if t.strip()]
    await evaluate_post(engine, content.strip(), topics)


async def main():
  args = parse_args()

  logging.basicConfig(
    level=logging.DEBUG if args.verbose else logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
  )

  print("=" * 60)
  print("  话题演化 Demo")
  print("=" * 60)
  print(f"  摘要: {args.digests or '无'}")
  print(f"  帖子: {args.posts or '交互输入'}")
  print(f"  模型: {args.model} ({args.model_name or '默认'})")
  print(f"  持久化: {args.db or '无'}")
  print("=" * 60)
  print()

  engine = build_engine(args)
  if args.db:
    restored = engine.load_from_persistence()
    print(f"从数据库恢复 {restored} 条记录")

  if args.digests:
    for item in _read_json_items(args.digests):
      digest = engine.store_digest(item)
      print(f"[摘要] {digest.id}: {digest.headline}")
    print()

  await engine.start()
  try:
    if args.posts:
      for item in _read_json_items(args.posts):
        await evaluate_post(engine, str(item.get("content", "")), list(item.get("topics") or []))
    else:
      print("输入 \"话题1,话题2 | 内容\"，/stats 查看统计，/quit 退出\n")
      await _input_loop(engine)
  except KeyboardInterrupt:
    print("\n[手动停止]")
  finally:
    await engine.stop()

  context = engine.format_context()
  if context:
    print("--- 上下文 ---")
    print(context)
    print()
  print("--- 统计 ---")
  print(json.dumps(engine.stats(), ensure_ascii=False, indent=2))


if __name__ == "__main__":
  asyncio.run(main())
