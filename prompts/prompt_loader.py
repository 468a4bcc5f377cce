"""
提示词加载器
负责按相对路径加载 txt 提示词模板，并填充变量
"""

from pathlib import Path
from typing import Optional


class PromptLoader:
  """
  提示词加载器

  管理 prompts/ 目录下的模板文件（如 evolution/storyline_classify.txt），
  已读取的文件在实例内缓存。
  """

  def __init__(self, prompts_dir: Optional[Path] = None):
    """
    初始化提示词加载器

    Args:
      prompts_dir: 提示词文件所在目录，默认为当前模块所在目录
    """
    if prompts_dir is None:
      self.prompts_dir = Path(__file__).parent
    else:
      self.prompts_dir = Path(prompts_dir)
    self._cache: dict[str, str] = {}

  def load(self, filename: str) -> str:
    """
    加载指定的提示词文件

    Args:
      filename: 文件名或相对路径（如 "evolution/subtopic_label.txt"）

    Returns:
      文件内容字符串

    Raises:
      FileNotFoundError: 文件不存在时抛出
    """
    if filename in self._cache:
      return self._cache[filename]
    file_path = self.prompts_dir / filename
    if not file_path.exists():
      raise FileNotFoundError(f"提示词文件不存在: {file_path}")
    text = file_path.read_text(encoding="utf-8")
    self._cache[filename] = text
    return text

  def load_template(self, path: str, **kwargs: str) -> str:
    """
    加载 txt 模板并填充变量

    Args:
      path: 模板文件相对路径
      **kwargs: 模板变量

    Returns:
      填充后的字符串
    """
    raw = self.load(path)
    if kwargs:
      return raw.format(**kwargs)
    return raw

  def list_templates(self, subdir: str = "") -> list[str]:
    """
    列出目录下的全部 txt 模板

    Args:
      subdir: 子目录（如 "evolution"）

    Returns:
      相对路径列表（已排序）
    """
    base = self.prompts_dir / subdir if subdir else self.prompts_dir
    if not base.exists():
      return []
    return sorted(
      str(p.relative_to(self.prompts_dir)).replace("\\", "/")
      for p in base.rglob("*.txt")
    )
