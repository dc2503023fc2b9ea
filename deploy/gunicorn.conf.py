"""Gunicorn 生产配置

用法:
  CRATEMIRROR_MIRROR_DIR=/srv/crates \
    gunicorn --config deploy/gunicorn.conf.py cratemirror.web.app:app
"""

import multiprocessing
import os

# ---------- 网络 ----------
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8080")

# ---------- 并发 ----------
# 只读静态文件服务，多进程即可，归档下载可能较慢所以放宽超时
workers = int(os.getenv("GUNICORN_WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8)))
threads = int(os.getenv("GUNICORN_THREADS", "4"))
worker_class = "gthread"
timeout = 300

# ---------- 日志 ----------
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ---------- 进程管理 ----------
graceful_timeout = 30
keepalive = 5
