"""modpull - 基于 ZIP 包清单的模组获取引擎

按引用解析远程数据库，经多镜像下载、校验并展开依赖，生成有序安装计划。
"""

__version__ = "0.1.0"
