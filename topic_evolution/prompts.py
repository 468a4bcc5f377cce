"""
话题演化提示词模板
从 prompts/evolution/*.txt 加载，支持 .format() 填充变量
"""

from prompts import PromptLoader

_loader = PromptLoader()

# 子话题标签生成 prompt
# 变量：{topic}, {hints}, {content}
SUBTOPIC_LABEL_PROMPT = _loader.load("evolution/subtopic_label.txt")

# 故事线判定 prompt
# 变量：{topic}, {known_patterns}, {learned_patterns}, {rule_confidence}, {rule_phase}, {content}
STORYLINE_CLASSIFY_PROMPT = _loader.load("evolution/storyline_classify.txt")
