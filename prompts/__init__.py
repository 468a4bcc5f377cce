"""
提示词模块
按相对路径加载 txt 提示词模板
"""

from .prompt_loader import PromptLoader

__all__ = ["PromptLoader"]
