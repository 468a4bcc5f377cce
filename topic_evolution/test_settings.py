"""
配置读取测试
"""

import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from topic_evolution.config import EvolutionConfig
from topic_evolution.settings import Settings


def test_lookup_order(tmp_path, monkeypatch) -> None:
  """环境变量 → 显式 values → 配置文件"""
  path = tmp_path / "settings.json"
  path.write_text(json.dumps({"A": "file", "B": "file", "C": "file"}), encoding="utf-8")
  monkeypatch.setenv("A", "env")

  settings = Settings(values={"A": "values", "B": "values"}, settings_path=path)
  assert settings.get("A") == "env"
  assert settings.get("B") == "values"
  assert settings.get("C") == "file"
  assert settings.get("D") is None

  isolated = Settings(values={"A": "values"}, settings_path=path, use_env=False)
  assert isolated.get("A") == "values"


def test_typed_getters_fall_back_on_bad_values(tmp_path) -> None:
  settings = Settings(
    values={
      "FLAG": "yes",
      "OFF": "0",
      "WEIRD": "maybe",
      "COUNT": "12",
      "RATIO": "0.25",
      "BROKEN": "twelve",
      "HUGE": "1e400",
      "INFINITE": "inf",
      "EMPTY": "",
    },
    settings_path=tmp_path / "missing.json",
    use_env=False,
  )
  assert settings.get_bool("FLAG", False) is True
  assert settings.get_bool("OFF", True) is False
  assert settings.get_bool("WEIRD", True) is True
  assert settings.get_int("COUNT", 0) == 12
  assert settings.get_float("RATIO", 1.0) == 0.25
  assert settings.get_int("BROKEN", 7) == 7
  assert settings.get_int("HUGE", 7) == 7
  assert settings.get_int("INFINITE", 7) == 7
  assert settings.get_float("BROKEN", 0.5) == 0.5
  assert settings.get_str("EMPTY", "default") == "default"
  assert settings.get_int("MISSING", 3) == 3


def test_unreadable_settings_file_is_ignored(tmp_path) -> None:
  path = tmp_path / "settings.json"
  path.write_text("{ not json", encoding="utf-8")
  settings = Settings(settings_path=path, use_env=False)
  assert settings.get("ANYTHING") is None


def test_config_from_settings_converts_units(tmp_path) -> None:
  settings = Settings(
    values={
      "TOPIC_CACHE_TTL_MS": "60000",
      "NOSTR_STORYLINE_CACHE_TTL_MINUTES": "90",
      "NOSTR_STORYLINE_CONFIDENCE_THRESHOLD": "0.6",
      "NOSTR_STORYLINE_MAX_PER_TOPIC": "3",
      "TOPIC_PHASE_MIN_TIMELINE": "8",
      "WATCHLIST_TTL_HOURS": "12",
      "NOSTR_FRESHNESS_DECAY_ENABLE": "false",
      "NOSTR_FRESHNESS_MAX_PENALTY": "0.3",
      "NARRATIVE_MAX_DIGESTS": "40",
      "TOPIC_EVOLUTION_LLM_ENABLED": "off",
    },
    settings_path=tmp_path / "missing.json",
    use_env=False,
  )
  config = EvolutionConfig.from_settings(settings)

  assert config.phase.label_cache_ttl_seconds == 60.0
  assert config.phase.model_enabled is False
  assert config.phase.phase_min_timeline == 8
  assert config.storyline.cache_ttl_hours == 1.5
  assert config.storyline.rule_threshold == 0.6
  assert config.storyline.max_per_topic == 3
  assert config.watchlist.ttl_hours == 12.0
  assert config.freshness.enabled is False
  assert config.freshness.max_penalty == 0.3
  assert config.max_digests == 40


def test_storyline_model_flag_defaults_to_narrative_flag(tmp_path) -> None:
  base = dict(settings_path=tmp_path / "missing.json", use_env=False)

  off = EvolutionConfig.from_settings(Settings(values={"NARRATIVE_LLM_ENABLE": "false"}, **base))
  assert off.storyline.model_enabled is False

  override = EvolutionConfig.from_settings(Settings(
    values={"NARRATIVE_LLM_ENABLE": "false", "NOSTR_STORYLINE_LLM_ENABLED": "true"}, **base,
  ))
  assert override.storyline.model_enabled is True
