"""
提示词加载器测试
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from prompts import PromptLoader


def test_evolution_templates_are_listed() -> None:
  loader = PromptLoader()
  assert loader.list_templates("evolution") == [
    "evolution/storyline_classify.txt",
    "evolution/subtopic_label.txt",
  ]


def test_storyline_template_keeps_literal_json_braces() -> None:
  loader = PromptLoader()
  text = loader.load_template(
    "evolution/storyline_classify.txt",
    topic="bitcoin",
    known_patterns="- regulatory: proposal → vote",
    learned_patterns="none",
    rule_confidence="0.20",
    rule_phase="none",
    content="members are rallying",
  )
  assert '"bitcoin"' in text
  assert '{"type": "progression"' in text
  assert "members are rallying" in text


def test_load_is_cached_and_missing_file_raises(tmp_path) -> None:
  (tmp_path / "a.txt").write_text("hello {name}", encoding="utf-8")
  loader = PromptLoader(tmp_path)
  assert loader.load_template("a.txt", name="world") == "hello world"

  (tmp_path / "a.txt").write_text("changed", encoding="utf-8")
  assert loader.load("a.txt") == "hello {name}"

  with pytest.raises(FileNotFoundError):
    loader.load("missing.txt")
