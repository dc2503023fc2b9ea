"""cratemirror - 按锁文件同步离线 crate 镜像"""

__version__ = "0.3.0"
