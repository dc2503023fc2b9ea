"""统一异常体系

所有业务异常继承 MirrorError，按同步流程中的失败类别细分。
CLI 层据此决定退出码，编排器据此把失败归类写入 SyncReport。

  - MalformedLockDocument / UnresolvedDependency: 解析期失败，整次运行终止
  - TransportError: 网络层失败，拉取器内部有界重试
  - ChecksumMismatch: 校验和不匹配，从不自动重试
  - IoError: 镜像目录写入失败（磁盘满、权限不足等）
"""

from __future__ import annotations


class MirrorError(Exception):
    """镜像工具基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(MirrorError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(MirrorError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class MalformedLockDocument(MirrorError):
    """锁文件无法解析，或版本号不符合语义化版本语法"""

    code = "MALFORMED_LOCK"


class UnresolvedDependency(MirrorError):
    """锁文件条目缺少 source 或 checksum 等必需字段"""

    code = "UNRESOLVED_DEPENDENCY"


class TransportError(MirrorError):
    """网络/HTTP 层失败（含非 2xx 状态码）

    retryable 标记该失败是否值得重试：连接错误、超时、截断、
    408/429/5xx 可重试；其余 4xx、未知协议、本地文件缺失不可重试。
    """

    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ChecksumMismatch(MirrorError):
    """下载内容的摘要与锁文件记录的校验和不一致"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, message: str, *, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class IoError(MirrorError):
    """镜像目录读写失败"""

    code = "IO_ERROR"
