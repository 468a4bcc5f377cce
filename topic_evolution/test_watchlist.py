"""
观察列表测试
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
  sys.path.insert(0, str(project_root))

from topic_evolution.watchlist import WatchlistMonitor, normalize_item


class _Clock:
  def __init__(self, start: datetime):
    self.now = start

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **kwargs) -> None:
    self.now += timedelta(**kwargs)


BASE = datetime(2024, 5, 10, 8, 0, 0)


def test_normalize_item_filters_generic_and_short() -> None:
  assert normalize_item("  Wallet Security ") == "wallet security"
  assert normalize_item("bitcoin") is None
  assert normalize_item("Price") is None
  assert normalize_item("ab") is None
  assert normalize_item("") is None
  assert normalize_item(None) is None


def test_add_items_dedupes() -> None:
  monitor = WatchlistMonitor(clock=_Clock(BASE))
  added = monitor.add_items(["Wallet Security", "wallet security", "nostr", "zap adoption"])
  assert added == ["wallet security", "zap adoption"]
  assert monitor.add_items(["WALLET SECURITY"]) == []
  assert len(monitor.active_items()) == 2


def test_item_expires_after_ttl() -> None:
  """到期前 1ms 仍然命中，到期后 1ms 不再命中"""
  clock = _Clock(BASE)
  monitor = WatchlistMonitor(clock=clock)
  monitor.add_items(["relay performance"])

  clock.now = BASE + timedelta(hours=24) - timedelta(milliseconds=1)
  assert monitor.check_match("relay performance is improving") is not None

  clock.now = BASE + timedelta(hours=24) + timedelta(milliseconds=1)
  assert monitor.check_match("relay performance is improving") is None
  assert monitor.get_state()["active"] == 0


def test_expired_item_can_be_added_again() -> None:
  clock = _Clock(BASE)
  monitor = WatchlistMonitor(clock=clock)
  monitor.add_items(["relay performance"])
  clock.advance(hours=25)
  assert monitor.add_items(["relay performance"]) == ["relay performance"]


def test_boost_is_capped() -> None:
  monitor = WatchlistMonitor(clock=_Clock(BASE))
  items = [f"signal {name}" for name in "abcdefghij"]
  monitor.add_items(items)

  match = monitor.check_match(" ".join(items))
  assert len(match.matches) == 10
  assert match.boost_score == 0.5

  single = monitor.check_match("we saw signal c today")
  assert single.matches == ("signal c",)
  assert abs(single.boost_score - 0.2) < 1e-9
  assert single.reason == "watchlist hit: signal c"


def test_tag_match_folds_separators() -> None:
  monitor = WatchlistMonitor(clock=_Clock(BASE))
  monitor.add_items(["wallet security"])

  match = monitor.check_match("nothing related here", tags=["Wallet-Security"])
  assert match is not None
  assert match.matches == ("wallet security",)

  assert monitor.check_match("nothing related here", tags=["wallet_security_audit"]) is not None
  assert monitor.check_match("nothing related here", tags=["mining"]) is None


def test_state_and_health() -> None:
  clock = _Clock(BASE)
  monitor = WatchlistMonitor(clock=clock)
  monitor.add_items(["relay performance"], source="digest", digest_id="lore_1")
  clock.advance(hours=6)
  monitor.add_items(["zap adoption"], source="manual")

  state = monitor.get_state()
  assert state["active"] == 2
  first = state["items"][0]
  assert first["item"] == "relay performance"
  assert first["digest_id"] == "lore_1"
  assert first["age_hours"] == 6.0
  assert first["expires_in_hours"] == 18.0

  health = monitor.health()
  assert health["active"] == 2
  assert health["max_age_hours"] == 6.0
  assert health["avg_age_hours"] == 3.0
  assert health["sources"] == {"digest": 1, "manual": 1}


def test_blank_or_tiny_content_does_not_match() -> None:
  monitor = WatchlistMonitor(clock=_Clock(BASE))
  monitor.add_items(["etf flows", "fee market", "taproot assets"])

  assert monitor.check_match(" ") is None
  assert monitor.check_match("") is None
  assert monitor.check_match("   ", tags=["fee-market"]) is None
  assert monitor.check_match("e") is None
  assert monitor.check_match("ta") is None
  assert monitor.check_match("gm", tags=["-", "a"]) is None

  # 达到最小长度的内容仍可被观察项包含
  partial = monitor.check_match("taproot")
  assert partial.matches == ("taproot assets",)
  assert monitor.check_match("  Fee Market is heating up ").matches == ("fee market",)
