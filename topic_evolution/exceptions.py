"""
话题演化异常定义

这些异常只在协作者适配层内抛出，组件边界统一捕获并记录日志，
不会传播给调用方。
"""


class TopicEvolutionError(Exception):
  """话题演化基础异常"""


class ClassifierError(TopicEvolutionError):
  """分类器调用失败（报错或超时）"""


class ClassifierUnavailable(ClassifierError):
  """分类器未配置、已禁用或超出调用额度"""


class MalformedClassifierResponse(ClassifierError):
  """分类器返回内容不符合约定格式"""


class PersistenceFailure(TopicEvolutionError):
  """持久化写入或查询失败"""
