"""
持久化协作者
记录按类型写入、按类型倒序查询；失败只记录日志，不影响内存状态
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .exceptions import PersistenceFailure

logger = logging.getLogger(__name__)


@runtime_checkable
class Persistence(Protocol):
  """持久化协议"""

  def create_record(self, record_type: str, payload: dict) -> bool: ...

  def query_records(self, record_type: str, limit: int = 100) -> list[dict]: ...


class NullPersistence:
  """空持久化：写入总是成功，查询总是为空"""

  def create_record(self, record_type: str, payload: dict) -> bool:
    return True

  def query_records(self, record_type: str, limit: int = 100) -> list[dict]:
    return []


class SqlitePersistence:
  """
  SQLite 持久化
  payload 以 JSON 文本保存
  """

  def __init__(self, db_path: Optional[str] = None):
    """
    初始化数据库

    Args:
      db_path: 数据库路径。
        - None: 默认文件路径 data/topic_evolution.db
        - ":memory:": 纯内存数据库（进程结束即销毁）
        - 其他字符串: 指定文件路径
    """
    self._in_memory = (db_path == ":memory:")

    if db_path is None:
      project_root = Path(__file__).parent.parent
      data_dir = project_root / "data"
      data_dir.mkdir(exist_ok=True)
      db_path = str(data_dir / "topic_evolution.db")

    self._db_path = db_path

    # 内存模式需要保持单一连接（关闭即销毁）
    if self._in_memory:
      self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
    else:
      self._shared_conn = None

    self._init_database()

  def _get_connection(self) -> sqlite3.Connection:
    """获取数据库连接"""
    if self._shared_conn is not None:
      return self._shared_conn
    return sqlite3.connect(self._db_path)

  def _init_database(self) -> None:
    with self._get_connection() as conn:
      conn.execute("""
        CREATE TABLE IF NOT EXISTS records (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          type TEXT NOT NULL,
          payload TEXT NOT NULL,
          created_at TEXT NOT NULL
        )
      """)
      conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_records_type
        ON records(type, id)
      """)

  def _insert(self, record_type: str, payload: dict) -> None:
    try:
      text = json.dumps(payload, ensure_ascii=False, default=str)
      with self._get_connection() as conn:
        conn.execute(
          "INSERT INTO records (type, payload, created_at) VALUES (?, ?, ?)",
          (record_type, text, datetime.now().isoformat()),
        )
    except (sqlite3.Error, TypeError, ValueError) as e:
      raise PersistenceFailure(f"写入 {record_type} 失败: {e}") from e

  def create_record(self, record_type: str, payload: dict) -> bool:
    try:
      self._insert(record_type, payload)
    except PersistenceFailure as e:
      logger.debug("%s", e)
      return False
    return True

  def query_records(self, record_type: str, limit: int = 100) -> list[dict]:
    """按写入时间倒序查询最近 limit 条"""
    try:
      with self._get_connection() as conn:
        rows = conn.execute(
          "SELECT payload FROM records WHERE type = ? ORDER BY id DESC LIMIT ?",
          (record_type, limit),
        ).fetchall()
    except sqlite3.Error as e:
      logger.debug("查询 %s 失败: %s", record_type, e)
      return []

    records = []
    for (payload,) in rows:
      try:
        records.append(json.loads(payload))
      except ValueError:
        logger.debug("跳过损坏的 %s 记录", record_type)
    return records

  def count(self, record_type: Optional[str] = None) -> int:
    with self._get_connection() as conn:
      if record_type is None:
        row = conn.execute("SELECT COUNT(*) FROM records").fetchone()
      else:
        row = conn.execute(
          "SELECT COUNT(*) FROM records WHERE type = ?", (record_type,),
        ).fetchone()
    return row[0] if row else 0
