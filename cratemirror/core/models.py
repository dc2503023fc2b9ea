"""核心数据模型

  - DependencyEdge / PackageDescriptor: 锁文件解析结果，不可变值对象
  - MirrorIndexEntry: 索引文件中的一行（一个 name+version）
  - SyncFailure / SyncReport: 单次同步的结果汇总，不落盘
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cratemirror.core.platform import PlatformPredicate
from cratemirror.core.semver import Version

# 索引行字段顺序与 cargo 保持一致，保证输出逐字节可比
INDEX_KEYS = ("name", "vers", "deps", "cksum", "features", "yanked")
DEP_KEYS = (
    "name", "req", "features", "optional",
    "default_features", "target", "kind", "package",
)

# =========================================================================
# 锁文件模型
# =========================================================================


@dataclass(frozen=True)
class DependencyEdge:
    """包声明的一条子依赖"""

    name: str
    req: str = "*"
    target: PlatformPredicate | None = None  # 平台谓词，原样保存不求值
    kind: str = "normal"  # "normal", "dev", "build"
    optional: bool = False
    default_features: bool = True
    features: tuple[str, ...] = ()
    package: str | None = None  # 重命名依赖时的真实包名

    def to_index_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "req": self.req,
            "features": sorted(self.features),
            "optional": self.optional,
            "default_features": self.default_features,
            "target": str(self.target) if self.target is not None else None,
            "kind": None if self.kind == "normal" else self.kind,
            "package": self.package,
        }


@dataclass(frozen=True)
class PackageDescriptor:
    """锁文件中一个已解析的依赖包

    身份 = (name, version, source)；checksum 等字段不参与相等性比较。
    """

    name: str
    version: Version
    source: str
    checksum: str = field(default="", compare=False)
    dependencies: tuple[DependencyEdge, ...] = field(default=(), compare=False)
    features: tuple[tuple[str, tuple[str, ...]], ...] = field(default=(), compare=False)

    @property
    def vers(self) -> str:
        return str(self.version)

    @property
    def sort_key(self) -> tuple:
        return (self.name, self.version.sort_key(), self.source)

    def feature_map(self) -> dict[str, list[str]]:
        return {k: sorted(v) for k, v in sorted(self.features)}

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


# =========================================================================
# 镜像索引模型
# =========================================================================


def _dep_sort_key(dep: dict[str, Any]) -> tuple:
    return tuple(
        "" if dep.get(k) is None else json.dumps(dep.get(k), sort_keys=True)
        for k in DEP_KEYS
    )


@dataclass
class MirrorIndexEntry:
    """索引文件中的一条版本记录"""

    name: str
    vers: str
    cksum: str
    deps: list[dict[str, Any]] = field(default_factory=list)
    features: dict[str, list[str]] = field(default_factory=dict)
    yanked: bool = False
    extra: dict[str, Any] = field(default_factory=dict)  # 保留未识别字段，如 links / v

    @property
    def version(self) -> Version:
        return Version.parse(self.vers)

    @classmethod
    def from_descriptor(cls, desc: PackageDescriptor, *, yanked: bool = False) -> MirrorIndexEntry:
        deps = [d.to_index_dict() for d in desc.dependencies]
        return cls(
            name=desc.name,
            vers=desc.vers,
            cksum=desc.checksum,
            deps=sorted(deps, key=_dep_sort_key),
            features=desc.feature_map(),
            yanked=yanked,
        )

    @classmethod
    def from_json_line(cls, line: str) -> MirrorIndexEntry:
        """解析一行索引记录，格式不合法时抛 ValueError"""
        data = json.loads(line)
        if not isinstance(data, dict):
            raise ValueError(f"索引行不是 JSON 对象: {line[:80]}")
        try:
            name = str(data["name"])
            vers = str(data["vers"])
        except KeyError as e:
            raise ValueError(f"索引行缺少字段 {e}: {line[:80]}") from e
        return cls(
            name=name,
            vers=vers,
            cksum=str(data.get("cksum") or ""),
            deps=list(data.get("deps") or []),
            features=dict(data.get("features") or {}),
            yanked=bool(data.get("yanked") or False),
            extra={k: v for k, v in data.items() if k not in INDEX_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "vers": self.vers,
            "deps": [{k: d.get(k) for k in DEP_KEYS} for d in self.deps],
            "cksum": self.cksum,
            "features": {k: list(v) for k, v in sorted(self.features.items())},
            "yanked": self.yanked,
        }
        out.update(self.extra)
        return out

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


# =========================================================================
# 同步结果模型
# =========================================================================


class PackageState(str, Enum):
    """单个包在一次同步中的状态机"""

    PENDING = "pending"
    SKIPPED = "skipped"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    FAILED = "failed"


class FailureKind(str, Enum):
    TRANSPORT = "transport"
    CHECKSUM = "checksum"
    IO = "io"


@dataclass
class SyncFailure:
    """单个包的失败记录"""

    name: str
    version: str
    kind: FailureKind
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.value,
            "reason": self.reason,
        }


@dataclass
class SyncReport:
    """单次同步结果汇总"""

    added: int = 0
    skipped: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    aborted: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return not self.failures and not self.aborted

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "skipped": self.skipped,
            "failed": self.failed,
            "aborted": self.aborted,
            "failures": [f.to_dict() for f in self.failures],
        }
