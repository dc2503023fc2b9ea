"""同步引擎核心：锁文件解析、拉取、校验、镜像存储与编排"""
