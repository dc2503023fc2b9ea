"""测试公共 fixture：内存传输层、锁文件构造"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from cratemirror.core.config import CRATES_IO_REGISTRY, Config
from cratemirror.core.exceptions import TransportError
from cratemirror.core.fetcher import UpstreamFetcher


class FakeTransport:
    """按 URL 返回预置内容；errors 中的异常按顺序先抛出"""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.calls: list[str] = []

    def serve(self, name: str, version: str, data: bytes) -> None:
        self.files[f"https://crates.io/api/v1/crates/{name}/{version}/download"] = data

    def get(self, url: str) -> bytes:
        self.calls.append(url)
        pending = self.errors.get(url)
        if pending:
            raise pending.pop(0)
        if url not in self.files:
            raise TransportError(f"HTTP 404 Not Found: {url}", retryable=False)
        return self.files[url]


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def make_fetcher(transport: FakeTransport):
    """构造使用内存传输、无等待重试的拉取器"""
    def _make(**overrides) -> UpstreamFetcher:
        cfg = Config(backoff=0, **overrides)
        return UpstreamFetcher(
            cfg, transports={"http": transport, "https": transport}, sleep=lambda _s: None,
        )
    return _make


@pytest.fixture()
def write_lock():
    """写出 v3 锁文件，packages 为 (name, version, archive bytes) 列表"""
    def _write(path: Path, packages: list[tuple[str, str, bytes]]) -> Path:
        lines = ["version = 3", ""]
        for name, version, data in packages:
            lines += [
                "[[package]]",
                f'name = "{name}"',
                f'version = "{version}"',
                f'source = "{CRATES_IO_REGISTRY}"',
                f'checksum = "{hashlib.sha256(data).hexdigest()}"',
                "",
            ]
        path.write_text("\n".join(lines), encoding="utf-8")
        return path
    return _write
