"""归档校验器

校验和格式:
  - "<hex>"          默认 sha256（与 cargo 锁文件一致）
  - "<algo>:<hex>"   显式指定算法，algo 见 SUPPORTED_ALGORITHMS

校验失败从不重试：不匹配意味着传输损坏或供应链被篡改，
必须作为显式失败上报，由编排器按策略决定中止还是继续。
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from pathlib import Path

from cratemirror.core.exceptions import ChecksumMismatch

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha256"
SUPPORTED_ALGORITHMS = frozenset(("sha256", "sha384", "sha512", "blake2b", "sha3_256"))
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_CHUNK = 64 * 1024


def parse_checksum(text: str) -> tuple[str, str]:
    """拆分校验和为 (算法, 小写 hex)，格式不合法时抛 ValueError"""
    algo, sep, hexpart = text.strip().partition(":")
    if not sep:
        algo, hexpart = DEFAULT_ALGORITHM, algo
    algo = algo.lower()
    if algo not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"不支持的摘要算法 '{algo}'，可选: {sorted(SUPPORTED_ALGORITHMS)}")
    expected_len = hashlib.new(algo).digest_size * 2
    if not _HEX_RE.match(hexpart) or len(hexpart) != expected_len:
        raise ValueError(f"校验和格式错误（期望 {expected_len} 位 {algo} hex）: {text!r}")
    return algo, hexpart.lower()


def digest(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    return hashlib.new(algorithm, data).hexdigest()


def digest_file(path: Path, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """分块计算文件摘要"""
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def matches(actual_hex: str, expected_hex: str) -> bool:
    return hmac.compare_digest(actual_hex.lower(), expected_hex.lower())


class ArchiveVerifier:
    """计算归档摘要并与锁文件记录的校验和比对"""

    def verify(self, data: bytes, expected_checksum: str) -> bool:
        """校验通过返回 True，不匹配抛 ChecksumMismatch"""
        algo, expected_hex = parse_checksum(expected_checksum)
        actual = digest(data, algo)
        if not matches(actual, expected_hex):
            raise ChecksumMismatch(
                f"校验和不匹配: 期望 {algo}:{expected_hex}, 实际 {algo}:{actual} "
                f"({len(data)} 字节)",
                expected=expected_hex,
                actual=actual,
            )
        logger.debug("  校验和通过: %s:%s", algo, actual[:16])
        return True

    def verify_file(self, path: Path, expected_checksum: str) -> bool:
        """重新计算磁盘文件摘要，不抛异常，文件缺失或不匹配返回 False"""
        algo, expected_hex = parse_checksum(expected_checksum)
        try:
            actual = digest_file(path, algo)
        except FileNotFoundError:
            return False
        return matches(actual, expected_hex)
