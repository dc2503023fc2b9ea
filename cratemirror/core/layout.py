"""镜像目录布局

路径规则与 cargo 本地注册表一致，客户端按同样的规则查找文件:

  <root>/config.json                    注册表标记文件
  <root>/index/1/a                      1 字符包名
  <root>/index/2/ab                     2 字符包名
  <root>/index/3/a/abc                  3 字符包名
  <root>/index/se/rd/serde              4+ 字符包名（前 2 位 / 3-4 位）
  <root>/<name>-<version>.crate         包归档

索引路径中的包名统一小写，归档文件名保留原始大小写。
包名只允许字母、数字、下划线和连字符，任何拼路径的入口都先校验。
"""

from __future__ import annotations

import re
from pathlib import Path

from cratemirror.core.semver import Version

INDEX_DIR = "index"
MARKER_FILE = "config.json"
ARCHIVE_SUFFIX = ".crate"

CRATE_NAME_RE = re.compile(r"[A-Za-z0-9_\-]+")


def is_valid_name(name: str) -> bool:
    return CRATE_NAME_RE.fullmatch(name) is not None


def _check_name(name: str) -> None:
    if not name:
        raise ValueError("包名不能为空")
    if not is_valid_name(name):
        raise ValueError(f"包名不合法: {name!r}")


def index_relpath(name: str) -> str:
    """包名对应的索引相对路径（相对 index/ 目录）"""
    _check_name(name)
    n = name.lower()
    if len(n) == 1:
        return f"1/{n}"
    if len(n) == 2:
        return f"2/{n}"
    if len(n) == 3:
        return f"3/{n[0]}/{n}"
    return f"{n[0:2]}/{n[2:4]}/{n}"


def index_path(root: Path, name: str) -> Path:
    return root / INDEX_DIR / index_relpath(name)


def archive_filename(name: str, version: str) -> str:
    _check_name(name)
    if not Version.is_valid(version):
        raise ValueError(f"版本号不合法: {version!r}")
    return f"{name}-{version}{ARCHIVE_SUFFIX}"


def archive_path(root: Path, name: str, version: str) -> Path:
    return root / archive_filename(name, version)


def parse_archive_filename(filename: str) -> tuple[str, str] | None:
    """把 "<name>-<version>.crate" 拆分为 (name, version)

    包名可能含连字符或以数字结尾（sec1-0.7.3），版本可能含连字符
    （curl-sys-0.4.80+curl-8.12.1），因此逐个连字符位置尝试，
    以其后是否为合法语义化版本作为分割依据。
    """
    if not filename.endswith(ARCHIVE_SUFFIX):
        return None
    stem = filename[: -len(ARCHIVE_SUFFIX)]
    for idx, ch in enumerate(stem):
        if ch != "-":
            continue
        name, version = stem[:idx], stem[idx + 1:]
        if is_valid_name(name) and Version.is_valid(version):
            return name, version
    return None
