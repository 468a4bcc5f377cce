"""
带过期时间的映射与滑动窗口计数器

观察列表、模型缓存、标签缓存、故事线都复用 TTLMap：
写入时记录时间戳，访问时惰性清理，外加周期性 prune。
"""

import logging
from collections import OrderedDict, deque
from datetime import datetime, timedelta
from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], datetime]


def parse_timestamp(value, fallback: Optional[datetime] = None) -> datetime:
  """
  把外部时间戳统一为本地无时区 datetime

  支持 datetime、毫秒时间戳、ISO 字符串（含时区偏移或结尾 Z）。
  无法解析时返回 fallback，fallback 为 None 时取当前时间。

  Args:
    value: 原始时间戳
    fallback: 解析失败或缺失时的取值
  """
  stamp = None
  if isinstance(value, datetime):
    stamp = value
  elif isinstance(value, (int, float)) and not isinstance(value, bool):
    try:
      stamp = datetime.fromtimestamp(value / 1000)
    except (ValueError, OverflowError, OSError) as e:
      logger.debug("无法解析毫秒时间戳 %r: %s", value, e)
  elif isinstance(value, str) and value.strip():
    text = value.strip()
    if text.endswith(("Z", "z")):
      text = text[:-1] + "+00:00"
    try:
      stamp = datetime.fromisoformat(text)
    except ValueError as e:
      logger.debug("无法解析时间戳 %r: %s", value, e)

  if stamp is None:
    stamp = fallback if fallback is not None else datetime.now()
  if stamp.tzinfo is not None:
    stamp = stamp.astimezone().replace(tzinfo=None)
  return stamp


class TTLMap(Generic[K, V]):
  """
  带过期时间的有序映射

  条目在 now - timestamp > ttl 时视为过期（恰好等于 ttl 时仍有效）。
  超出 max_size 时先清理过期条目，仍超出则淘汰最早写入的条目。
  """

  def __init__(
    self,
    ttl: timedelta,
    clock: Clock = datetime.now,
    max_size: Optional[int] = None,
  ):
    """
    Args:
      ttl: 存活时长
      clock: 时钟函数（测试可注入）
      max_size: 最大条目数，None 表示不限
    """
    self._ttl = ttl
    self._clock = clock
    self._max_size = max_size
    self._data: "OrderedDict[K, tuple[V, datetime]]" = OrderedDict()

  @property
  def ttl(self) -> timedelta:
    return self._ttl

  def _expired(self, stamp: datetime, now: datetime) -> bool:
    return now - stamp > self._ttl

  def set(self, key: K, value: V, timestamp: Optional[datetime] = None) -> None:
    """写入条目（覆盖时移到末尾）"""
    stamp = timestamp if timestamp is not None else self._clock()
    if key in self._data:
      del self._data[key]
    self._data[key] = (value, stamp)

    if self._max_size is not None and len(self._data) > self._max_size:
      self.prune()
      while len(self._data) > self._max_size:
        self._data.popitem(last=False)

  def touch(self, key: K, timestamp: Optional[datetime] = None) -> bool:
    """刷新条目时间戳，条目不存在返回 False"""
    entry = self._data.get(key)
    if entry is None:
      return False
    self.set(key, entry[0], timestamp)
    return True

  def get(self, key: K) -> Optional[V]:
    """读取未过期条目，过期条目顺带删除"""
    entry = self._data.get(key)
    if entry is None:
      return None
    value, stamp = entry
    if self._expired(stamp, self._clock()):
      del self._data[key]
      return None
    return value

  def peek(self, key: K) -> Optional[V]:
    """读取条目，不检查过期"""
    entry = self._data.get(key)
    return entry[0] if entry is not None else None

  def timestamp(self, key: K) -> Optional[datetime]:
    entry = self._data.get(key)
    return entry[1] if entry is not None else None

  def pop(self, key: K) -> Optional[V]:
    entry = self._data.pop(key, None)
    return entry[0] if entry is not None else None

  def __contains__(self, key: object) -> bool:
    return self.get(key) is not None  # type: ignore[arg-type]

  def __len__(self) -> int:
    return len(self._data)

  def prune(
    self,
    now: Optional[datetime] = None,
    keep: Optional[Callable[[K, V, datetime], bool]] = None,
  ) -> int:
    """
    清理过期条目

    Args:
      now: 参考时间，默认取时钟
      keep: 额外判定，返回 False 的未过期条目也会删除

    Returns:
      删除的条目数
    """
    now = now or self._clock()
    doomed = [
      key for key, (value, stamp) in self._data.items()
      if self._expired(stamp, now) or (keep is not None and not keep(key, value, stamp))
    ]
    for key in doomed:
      del self._data[key]
    return len(doomed)

  def items(self) -> Iterator[tuple[K, V, datetime]]:
    """遍历未过期条目 (key, value, timestamp)，按写入顺序"""
    now = self._clock()
    for key, (value, stamp) in list(self._data.items()):
      if not self._expired(stamp, now):
        yield key, value, stamp

  def values(self) -> list[V]:
    return [value for _, value, _ in self.items()]

  def clear(self) -> None:
    self._data.clear()


class SlidingWindowCounter:
  """
  滑动窗口调用计数器

  每次尝试调用都计入窗口，窗口内次数达到上限后拒绝。
  """

  def __init__(
    self,
    limit: int,
    window: timedelta = timedelta(hours=1),
    clock: Clock = datetime.now,
  ):
    self._limit = limit
    self._window = window
    self._clock = clock
    self._calls: deque[datetime] = deque()

  def _evict(self, now: datetime) -> None:
    while self._calls and now - self._calls[0] >= self._window:
      self._calls.popleft()

  def try_acquire(self) -> bool:
    """尝试占用一次调用额度"""
    now = self._clock()
    self._evict(now)
    if len(self._calls) >= self._limit:
      return False
    self._calls.append(now)
    return True

  def remaining(self) -> int:
    """窗口内剩余额度"""
    self._evict(self._clock())
    return max(0, self._limit - len(self._calls))

  @property
  def limit(self) -> int:
    return self._limit
