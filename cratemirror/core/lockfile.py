"""锁文件解析

读取 Cargo.lock 风格的 TOML 锁文件，产出需要镜像的 PackageDescriptor 集合。

支持的格式:
  - v2/v3/v4: [[package]] 表内直接带 checksum
  - v1:       校验和集中在 [metadata] 段，
              键为 "checksum <name> <version> (<source>)"，值 "<none>" 表示缺失
  - 更早的 [root] 段表示工作区根包，属于本地包，忽略

依赖边既可以是字符串 ("name" / "name version" / "name version (source)")，
也可以是内联表 { name, req, target, kind, optional, default_features,
features, package }；target 解析为平台谓词树，原样写入索引。

被排除（无需镜像）的条目:
  - 既无 source 也无 checksum: 工作区成员
  - path+ 来源: 本地路径依赖
  - git+ 来源: 需要打包构建，不在本工具职责内
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from cratemirror.core.exceptions import MalformedLockDocument, UnresolvedDependency
from cratemirror.core.layout import is_valid_name
from cratemirror.core.models import DependencyEdge, PackageDescriptor
from cratemirror.core.platform import parse_predicate
from cratemirror.core.semver import Version
from cratemirror.core.verifier import parse_checksum
from cratemirror.utils.net import split_source_id

logger = logging.getLogger(__name__)

_LOCAL_KINDS = frozenset(("path",))
_GIT_KINDS = frozenset(("git",))
_DEP_KINDS = frozenset(("normal", "dev", "build"))
_NONE_CHECKSUM = "<none>"


class LockDocumentReader:
    """锁文件读取器 - 纯读取，无副作用"""

    def parse(self, path: str | Path) -> set[PackageDescriptor]:
        """解析锁文件，返回需要镜像的包集合

        Raises:
            MalformedLockDocument: 文件无法读取/解析，或版本号不合法
            UnresolvedDependency: 注册表包缺少 source 或 checksum
        """
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8")
            doc = tomllib.loads(text)
        except (OSError, UnicodeDecodeError) as e:
            raise MalformedLockDocument(f"无法读取锁文件 {p}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise MalformedLockDocument(f"锁文件 TOML 语法错误 {p}: {e}") from e

        return self.parse_document(doc, origin=str(p))

    def parse_document(self, doc: dict[str, Any], *, origin: str = "<memory>") -> set[PackageDescriptor]:
        packages = doc.get("package", [])
        if not isinstance(packages, list) or not all(isinstance(e, dict) for e in packages):
            raise MalformedLockDocument(f"{origin}: package 必须是表数组 ([[package]])")

        metadata = doc.get("metadata", {})
        if not isinstance(metadata, dict):
            raise MalformedLockDocument(f"{origin}: metadata 必须是表")

        seen: dict[tuple[str, str], PackageDescriptor] = {}
        result: set[PackageDescriptor] = set()
        excluded = 0
        for raw in packages:
            desc = self._parse_package(raw, metadata, origin)
            if desc is None:
                excluded += 1
                continue
            key = (desc.name.lower(), desc.vers)
            other = seen.setdefault(key, desc)
            if other is not desc and (other.source != desc.source or other.checksum != desc.checksum):
                # 镜像里每个 name+version 只有一个归档和一行索引
                raise MalformedLockDocument(
                    f"{origin}: {desc} 出现了多次且来源或 checksum 不同 "
                    f"({other.source} / {desc.source})，镜像无法同时容纳"
                )
            result.add(desc)

        logger.info(
            "锁文件已解析: %s (%d 个待镜像, %d 个本地/git 包已排除)",
            origin, len(result), excluded,
        )
        return result

    # ------------------------------------------------------------------
    # 单个包
    # ------------------------------------------------------------------

    def _parse_package(
        self, raw: dict[str, Any], metadata: dict[str, Any], origin: str,
    ) -> PackageDescriptor | None:
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise MalformedLockDocument(f"{origin}: package 条目缺少 name")
        _check_name(name, origin)
        version_text = raw.get("version")
        if not isinstance(version_text, str):
            raise MalformedLockDocument(f"{origin}: 包 '{name}' 缺少 version")
        try:
            version = Version.parse(version_text)
        except ValueError as e:
            raise MalformedLockDocument(f"{origin}: 包 '{name}' 的版本号不合法: {e}") from e

        source = raw.get("source")
        if source is not None and (not isinstance(source, str) or not source):
            raise MalformedLockDocument(f"{origin}: 包 '{name}' 的 source 必须是非空字符串")
        checksum = self._checksum_for(raw, metadata, name, version_text, source, origin)

        if source is None:
            if checksum:
                raise UnresolvedDependency(
                    f"{origin}: 包 {name}@{version_text} 记录了 checksum 但缺少 source"
                )
            logger.debug("  跳过工作区包: %s@%s", name, version_text)
            return None

        kind, _ = split_source_id(source)
        if kind in _LOCAL_KINDS:
            logger.debug("  跳过本地路径包: %s@%s (%s)", name, version_text, source)
            return None
        if kind in _GIT_KINDS:
            logger.warning("  跳过 git 依赖（需要构建，不做镜像）: %s@%s (%s)", name, version_text, source)
            return None
        if not checksum:
            raise UnresolvedDependency(
                f"{origin}: 包 {name}@{version_text} ({source}) 缺少 checksum"
            )

        return PackageDescriptor(
            name=name,
            version=version,
            source=source,
            checksum=checksum,
            dependencies=self._parse_edges(raw.get("dependencies"), name, origin),
            features=self._parse_features(raw.get("features"), name, origin),
        )

    @staticmethod
    def _checksum_for(
        raw: dict[str, Any], metadata: dict[str, Any],
        name: str, version: str, source: str | None, origin: str,
    ) -> str:
        value = raw.get("checksum")
        if value is None and source is not None:
            value = metadata.get(f"checksum {name} {version} ({source})")
        if value is None or value == _NONE_CHECKSUM:
            return ""
        if not isinstance(value, str):
            raise MalformedLockDocument(f"{origin}: 包 {name}@{version} 的 checksum 必须是字符串")
        try:
            parse_checksum(value)
        except ValueError as e:
            raise MalformedLockDocument(f"{origin}: 包 {name}@{version} 的 checksum 无效: {e}") from e
        return value.strip()

    @staticmethod
    def _parse_features(raw: Any, name: str, origin: str) -> tuple[tuple[str, tuple[str, ...]], ...]:
        if raw is None:
            return ()
        if not isinstance(raw, dict) or not all(
            isinstance(v, list) and all(isinstance(x, str) for x in v) for v in raw.values()
        ):
            raise MalformedLockDocument(f"{origin}: 包 '{name}' 的 features 必须是 名称 -> 字符串列表")
        return tuple(sorted((k, tuple(v)) for k, v in raw.items()))

    # ------------------------------------------------------------------
    # 依赖边
    # ------------------------------------------------------------------

    def _parse_edges(self, raw: Any, owner: str, origin: str) -> tuple[DependencyEdge, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise MalformedLockDocument(f"{origin}: 包 '{owner}' 的 dependencies 必须是数组")
        return tuple(self._parse_edge(d, owner, origin) for d in raw)

    def _parse_edge(self, raw: Any, owner: str, origin: str) -> DependencyEdge:
        if isinstance(raw, str):
            return self._parse_edge_string(raw, owner, origin)
        if isinstance(raw, dict):
            return self._parse_edge_table(raw, owner, origin)
        raise MalformedLockDocument(f"{origin}: 包 '{owner}' 的依赖项必须是字符串或内联表")

    @staticmethod
    def _req_for(version: str | None, owner: str, origin: str) -> str:
        if version is None:
            return "*"
        if not Version.is_valid(version):
            raise MalformedLockDocument(f"{origin}: 包 '{owner}' 的依赖版本号不合法: {version!r}")
        return f"^{version}"

    def _parse_edge_string(self, text: str, owner: str, origin: str) -> DependencyEdge:
        # "name [version] [(source)]"
        head, _, _source = text.partition(" (")
        parts = head.split()
        if not parts or len(parts) > 2:
            raise MalformedLockDocument(f"{origin}: 包 '{owner}' 的依赖项格式错误: {text!r}")
        _check_name(parts[0], origin)
        version = parts[1] if len(parts) == 2 else None
        return DependencyEdge(name=parts[0], req=self._req_for(version, owner, origin))

    def _parse_edge_table(self, raw: dict[str, Any], owner: str, origin: str) -> DependencyEdge:
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise MalformedLockDocument(f"{origin}: 包 '{owner}' 的依赖项缺少 name")
        _check_name(name, origin)

        req = raw.get("req")
        if req is None:
            req = self._req_for(raw.get("version"), owner, origin)
        elif not isinstance(req, str) or not req:
            raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name} 的 req 必须是非空字符串")

        target = None
        if raw.get("target") is not None:
            if not isinstance(raw["target"], str):
                raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name} 的 target 必须是字符串")
            try:
                target = parse_predicate(raw["target"])
            except ValueError as e:
                raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name}: {e}") from e

        kind = raw.get("kind") or "normal"
        if kind not in _DEP_KINDS:
            raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name} 的 kind 未知: {kind!r}")

        features = raw.get("features") or []
        if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
            raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name} 的 features 必须是字符串列表")

        package = raw.get("package")
        if package is not None:
            if not isinstance(package, str):
                raise MalformedLockDocument(f"{origin}: 依赖 {owner} -> {name} 的 package 必须是字符串")
            _check_name(package, origin)

        optional = raw.get("optional", False)
        default_features = raw.get("default_features", raw.get("default-features", True))
        if not isinstance(optional, bool) or not isinstance(default_features, bool):
            raise MalformedLockDocument(
                f"{origin}: 依赖 {owner} -> {name} 的 optional / default_features 必须是布尔值"
            )

        return DependencyEdge(
            name=name,
            req=req,
            target=target,
            kind=kind,
            optional=optional,
            default_features=default_features,
            features=tuple(features),
            package=package or None,
        )


def _check_name(name: str, origin: str) -> None:
    if not is_valid_name(name):
        raise MalformedLockDocument(f"{origin}: 包名不合法: {name!r}")


def parse_lockfile(path: str | Path) -> set[PackageDescriptor]:
    """便捷入口：LockDocumentReader().parse(path)"""
    return LockDocumentReader().parse(path)
