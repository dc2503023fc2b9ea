"""网络工具 — 来源标识拆分与 URL 协议校验

锁文件 source 字段形如:
  registry+https://github.com/rust-lang/crates.io-index
  sparse+https://index.crates.io/
  git+https://github.com/foo/bar?branch=main#<commit>
  path+file:///home/me/project
"""

from __future__ import annotations

from urllib.parse import urlparse

from cratemirror.core.exceptions import ValidationError

HTTP_SCHEMES = frozenset(("http", "https"))
FETCH_SCHEMES = frozenset(("http", "https", "file"))


def split_source_id(source: str) -> tuple[str, str]:
    """拆分为 (kind, url)，无 "+" 前缀时 kind 为空串"""
    kind, sep, url = source.partition("+")
    if not sep or "://" in kind:
        return "", source
    return kind, url


def url_scheme(url: str) -> str:
    """返回 URL 协议；裸路径（含 Windows 盘符）视为 file"""
    scheme = urlparse(url).scheme
    if not scheme or len(scheme) == 1:
        return "file"
    return scheme.lower()


def validate_url_scheme(
    url: str, *, allowed: frozenset[str] = HTTP_SCHEMES, context: str = "",
) -> str:
    """校验 URL 协议在白名单内，返回协议名

    Raises:
        ValidationError: 协议不在白名单内（如 ftp://、gopher://）
    """
    scheme = url_scheme(url)
    if scheme not in allowed:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{scheme}'{label}，"
            f"仅支持 {'/'.join(sorted(allowed))}: {url}"
        )
    return scheme
