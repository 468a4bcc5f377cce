"""
配置项提供者
按名称读取字符串配置，环境变量优先，其次 JSON 配置文件
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class Settings:
  """
  命名配置项读取器

  查找顺序：环境变量 → 构造时传入的 values → JSON 配置文件。
  缺失或格式错误的值一律回落到调用方给出的默认值。
  """

  def __init__(
    self,
    values: Optional[dict] = None,
    settings_path: Optional[Path] = None,
    use_env: bool = True,
  ):
    """
    初始化配置读取器

    Args:
      values: 显式配置项（测试或宿主注入）
      settings_path: JSON 配置文件路径，默认为项目根目录下的 config/settings.json
      use_env: 是否读取环境变量
    """
    if settings_path is None:
      project_root = Path(__file__).parent.parent
      settings_path = project_root / "config" / "settings.json"

    self.settings_path = Path(settings_path)
    self._use_env = use_env
    self._values: dict = dict(values or {})
    self._file_values: dict = {}

    if self.settings_path.exists():
      try:
        self._file_values = json.loads(self.settings_path.read_text(encoding="utf-8"))
      except (OSError, ValueError) as e:
        logger.warning("配置文件读取失败 %s: %s", self.settings_path, e)

  def get(self, name: str) -> Optional[str]:
    """读取原始配置值，不存在返回 None"""
    if self._use_env and name in os.environ:
      return os.environ[name]
    if name in self._values:
      value = self._values[name]
    else:
      value = self._file_values.get(name)
    return None if value is None else str(value)

  def get_str(self, name: str, default: str) -> str:
    value = self.get(name)
    return value if value not in (None, "") else default

  def get_bool(self, name: str, default: bool) -> bool:
    value = self.get(name)
    if value is None or value == "":
      return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
      return True
    if lowered in ("0", "false", "no", "off"):
      return False
    logger.debug("配置 %s 不是布尔值: %r，使用默认值 %s", name, value, default)
    return default

  def get_int(self, name: str, default: int) -> int:
    value = self.get(name)
    if value is None or value == "":
      return default
    try:
      return int(float(value))
    except (ValueError, OverflowError):
      logger.debug("配置 %s 不是整数: %r，使用默认值 %s", name, value, default)
      return default

  def get_float(self, name: str, default: float) -> float:
    value = self.get(name)
    if value is None or value == "":
      return default
    try:
      return float(value)
    except ValueError:
      logger.debug("配置 %s 不是数字: %r，使用默认值 %s", name, value, default)
      return default
