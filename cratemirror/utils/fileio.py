"""文件读写工具

集中管理镜像目录与配置文件的读写:
  - atomic_write / atomic_write_bytes: 先写同目录临时文件再 rename，
    读者永远看不到写了一半的文件
  - load_yaml: 配置文件读取，带大小保护
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# YAML 文件最大大小限制 (10MB)，防止恶意大文件导致内存耗尽
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write_bytes(path: Path, data: bytes, *, fsync: bool = True) -> None:
    """原子写入二进制文件

    实现:
        1. 在同目录创建以 "." 开头的临时文件（同一文件系统，rename 才是原子的）
        2. 写入并 fsync
        3. os.replace 覆盖目标文件
        4. 任何失败都清理临时文件后重新抛出

    异常:
        OSError: 写入或移动失败（磁盘满、无权限等）
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            if fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(tmp, str(path))
    except BaseException:
        # 中断（含 KeyboardInterrupt）也不能在目录里留下临时文件
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def atomic_write(path: Path, content: str) -> None:
    """原子写入 UTF-8 文本文件"""
    atomic_write_bytes(path, content.encode("utf-8"))


def is_temp_file(path: Path) -> bool:
    """是否为 atomic_write 产生的临时文件"""
    return path.name.startswith(".") and path.name.endswith(".tmp")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    返回:
        dict: 解析后的字典。文件不存在或为空时返回空字典

    异常:
        ValueError: 文件过大，或顶层不是字典
        yaml.YAMLError: YAML 格式错误
        OSError: 读取失败
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", path, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ValueError(
            f"{path} 顶层必须是字典 (实际类型: {type(result).__name__})"
        )
    return result
