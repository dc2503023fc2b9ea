"""上游拉取器

职责:
- 由 source 标识 + 包名/版本解析出下载地址（地址模板）
- 按地址协议选择传输层（http/https 走 urllib，file/裸路径读本地目录）
- 有界重试 + 指数退避；失败先分类（可重试 / 终止）再决定是否继续
- 不写镜像目录

地址模板占位符与 cargo 注册表 config.json 的 dl 字段一致:
  {crate} {version} {prefix} {lowerprefix} {sha256-checksum}
模板不含任何占位符时自动追加 /{crate}/{version}/download。
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import urlparse
from urllib.request import url2pathname

from cratemirror.core.config import CRATES_IO_REGISTRY, Config, get_config
from cratemirror.core.exceptions import TransportError, ValidationError
from cratemirror.core.models import PackageDescriptor
from cratemirror.core.verifier import parse_checksum
from cratemirror.utils.net import FETCH_SCHEMES, split_source_id, validate_url_scheme

logger = logging.getLogger(__name__)

CRATES_IO_DL = "https://crates.io/api/v1/crates/{crate}/{version}/download"
BUILTIN_TEMPLATES = {
    CRATES_IO_REGISTRY: CRATES_IO_DL,
    "sparse+https://index.crates.io/": CRATES_IO_DL,
}
_MARKERS = ("{crate}", "{version}", "{prefix}", "{lowerprefix}", "{sha256-checksum}")
# 指向一个存放 <name>-<version>.crate 的目录（例如另一个本地镜像）
_DIRECTORY_KINDS = frozenset(("local", "local-registry", "directory"))
_RETRYABLE_STATUS = frozenset((408, 429))


# =========================================================================
# 传输层
# =========================================================================


class Transport(Protocol):
    """按 URL 取回完整字节内容，失败抛 TransportError"""

    def get(self, url: str) -> bytes:
        ...


class HttpTransport:
    """基于 urllib 的 HTTP(S) 传输"""

    def __init__(self, *, timeout: float = 30.0, user_agent: str = "cratemirror") -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    def get(self, url: str) -> bytes:
        req = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                data = resp.read()
                length = resp.headers.get("Content-Length")
        except urllib.error.HTTPError as e:
            retryable = e.code in _RETRYABLE_STATUS or e.code >= 500
            raise TransportError(f"HTTP {e.code} {e.reason}: {url}", retryable=retryable) from e
        except urllib.error.URLError as e:
            raise TransportError(f"网络错误 {e.reason}: {url}") from e
        except (http.client.HTTPException, TimeoutError, ConnectionError) as e:
            # IncompleteRead 也在这里：连接中途断开，响应体被截断
            raise TransportError(f"传输中断 ({type(e).__name__}: {e}): {url}") from e

        if length is not None and length.isdigit() and int(length) != len(data):
            raise TransportError(
                f"响应体被截断: 期望 {length} 字节, 实际 {len(data)} 字节: {url}"
            )
        return data


class LocalTransport:
    """从本地文件系统读取（file:// URL 或裸路径）"""

    def get(self, url: str) -> bytes:
        parsed = urlparse(url)
        path = Path(url2pathname(parsed.path)) if parsed.scheme == "file" else Path(url)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, PermissionError) as e:
            raise TransportError(f"本地文件不可读: {path} ({e})", retryable=False) from e
        except OSError as e:
            raise TransportError(f"读取本地文件失败: {path} ({e})") from e


# =========================================================================
# 重试策略
# =========================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """有界重试：最多 retries + 1 次尝试，第 n 次重试前等待 backoff * 2**(n-1) 秒"""

    retries: int = 3
    backoff: float = 0.5

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delay(self, attempt: int) -> float:
        return self.backoff * (2 ** (attempt - 1))


def _expand(template: str, name: str, version: str, checksum: str) -> str:
    if not any(m in template for m in _MARKERS):
        template = template.rstrip("/") + "/{crate}/{version}/download"
    n = len(name)
    if n <= 2:
        prefix = str(n)
    elif n == 3:
        prefix = f"3/{name[0]}"
    else:
        prefix = f"{name[0:2]}/{name[2:4]}"
    sha256 = ""
    if checksum:
        algo, hexpart = parse_checksum(checksum)
        sha256 = hexpart if algo == "sha256" else ""
    return (
        template.replace("{crate}", name)
        .replace("{version}", version)
        .replace("{prefix}", prefix)
        .replace("{lowerprefix}", prefix.lower())
        .replace("{sha256-checksum}", sha256)
    )


# =========================================================================
# 拉取器
# =========================================================================


class UpstreamFetcher:
    """上游拉取器 - 地址解析 + 传输选择 + 有界重试"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        transports: dict[str, Transport] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or get_config()
        self.policy = RetryPolicy(retries=self.config.retries, backoff=self.config.backoff)
        http_transport = HttpTransport(timeout=self.config.timeout, user_agent=self.config.user_agent)
        self.transports: dict[str, Transport] = {
            "http": http_transport,
            "https": http_transport,
            "file": LocalTransport(),
        }
        if transports:
            self.transports.update(transports)
        self._sleep = sleep
        self._templates = {**BUILTIN_TEMPLATES, **self.config.sources}
        self._dl_cache: dict[str, str] = {}
        self._dl_lock = threading.Lock()

    def fetch(self, descriptor: PackageDescriptor) -> bytes:
        """拉取一个包的归档字节"""
        return self.fetch_url(
            descriptor.source, descriptor.name, descriptor.vers,
            checksum=descriptor.checksum,
        )

    def fetch_url(self, source: str, name: str, version: str, *, checksum: str = "") -> bytes:
        """按 (source, name, version) 拉取，重试耗尽后抛出最后一次 TransportError"""
        url = self.resolve_location(source, name, version, checksum=checksum)
        logger.info("  下载: %s@%s <- %s", name, version, url)
        data = self._get_with_retry(url)
        logger.info("  已下载: %s@%s (%d 字节)", name, version, len(data))
        return data

    def resolve_location(self, source: str, name: str, version: str, *, checksum: str = "") -> str:
        """把 source 标识映射为具体下载地址"""
        return _expand(self._template_for(source), name, version, checksum)

    def _template_for(self, source: str) -> str:
        for key in (source, source.rstrip("/"), source.rstrip("/") + "/"):
            if key in self._templates:
                return self._templates[key]

        kind, url = split_source_id(source)
        if kind in _DIRECTORY_KINDS:
            return url.rstrip("/") + "/{crate}-{version}.crate"
        if kind == "sparse":
            return self._sparse_dl(url)
        raise TransportError(
            f"没有为来源 '{source}' 配置下载地址模板（在配置文件 sources 中添加）",
            retryable=False,
        )

    def _sparse_dl(self, index_url: str) -> str:
        """sparse 注册表：读取 <index>/config.json 的 dl 字段并缓存"""
        with self._dl_lock:
            if index_url in self._dl_cache:
                return self._dl_cache[index_url]
        raw = self._get_with_retry(index_url.rstrip("/") + "/config.json")
        try:
            dl = json.loads(raw.decode("utf-8"))["dl"]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"注册表 config.json 无效: {index_url} ({e})", retryable=False) from e
        if not isinstance(dl, str) or not dl:
            raise TransportError(f"注册表 config.json 缺少 dl: {index_url}", retryable=False)
        with self._dl_lock:
            self._dl_cache[index_url] = dl
        return dl

    def _transport_for(self, url: str) -> Transport:
        try:
            scheme = validate_url_scheme(url, allowed=FETCH_SCHEMES, context="上游下载")
        except ValidationError as e:
            raise TransportError(str(e), retryable=False) from e
        return self.transports[scheme]

    def _get_with_retry(self, url: str) -> bytes:
        transport = self._transport_for(url)
        last: TransportError | None = None
        for attempt in range(self.policy.attempts):
            if attempt:
                delay = self.policy.delay(attempt)
                logger.warning(
                    "  重试 (%d/%d)，%.1fs 后: %s (%s)",
                    attempt, self.policy.retries, delay, url, last,
                )
                self._sleep(delay)
            try:
                return transport.get(url)
            except TransportError as e:
                last = e
            # 分类：终止性错误不再重试
            if not last.retryable:
                break
        assert last is not None
        raise last
