"""镜像存储

镜像目录的唯一写入者。目录布局见 cratemirror.core.layout。

一致性约束:
  - 归档文件的摘要永远等于对应索引条目的 cksum；
    无法确认这一点时，该条目视为不存在（has_valid_entry 返回 False）
  - 归档与索引分别原子提交（同目录临时文件 + os.replace）；
    两次提交之间被中断时，下次同步因 has_valid_entry 为 False 而自动重做
  - 索引采用 读取 -> 合并 -> 临时文件 -> 原子替换，条目按版本排序
  - 已 yank 的条目只打标记，从不删除
  - 同一包名的索引写入经由每包一把锁串行化，不同包之间互不阻塞
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path

from cratemirror.core.exceptions import IoError, ValidationError
from cratemirror.core.layout import (
    ARCHIVE_SUFFIX,
    INDEX_DIR,
    MARKER_FILE,
    archive_path,
    index_path,
    is_valid_name,
    parse_archive_filename,
)
from cratemirror.core.models import MirrorIndexEntry, PackageDescriptor
from cratemirror.core.semver import Version
from cratemirror.core.verifier import ArchiveVerifier
from cratemirror.utils.fileio import atomic_write, is_temp_file

logger = logging.getLogger(__name__)

# 标记文件内容固定：非 API 注册表，仅本地可读
MARKER_CONTENT = json.dumps(
    {"api": None, "dl": "{crate}-{version}.crate", "local-only": True},
    indent=2,
) + "\n"


def _version_key(vers: str) -> tuple:
    # 不合法的版本号（外部写入的历史数据）排在最后，按字符串排序
    try:
        return (0, Version.parse(vers).sort_key())
    except ValueError:
        return (1, vers)


class MirrorStore:
    """磁盘上的镜像注册表"""

    def __init__(self, root: str | Path, verifier: ArchiveVerifier | None = None) -> None:
        self.root = Path(root)
        self.verifier = verifier or ArchiveVerifier()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # 路径
    # ------------------------------------------------------------------

    def archive_path(self, name: str, version: str) -> Path:
        return archive_path(self.root, name, version)

    def index_path(self, name: str) -> Path:
        return index_path(self.root, name)

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name.lower(), threading.Lock())

    # ------------------------------------------------------------------
    # 注册表标记
    # ------------------------------------------------------------------

    def ensure_registry_marker(self) -> bool:
        """写入注册表标记文件与 index/ 目录，内容未变时不重写；返回是否写入"""
        marker = self.root / MARKER_FILE
        try:
            (self.root / INDEX_DIR).mkdir(parents=True, exist_ok=True)
            if marker.exists() and marker.read_text(encoding="utf-8") == MARKER_CONTENT:
                return False
            atomic_write(marker, MARKER_CONTENT)
        except OSError as e:
            raise IoError(f"无法初始化镜像目录 {self.root}: {e}") from e
        logger.info("已写入注册表标记: %s", marker)
        return True

    def sweep_temp_files(self) -> int:
        """清理被强制终止的进程遗留的临时文件，返回清理数量"""
        removed = 0
        for path in self._walk():
            if is_temp_file(path):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                removed += 1
                logger.info("清理遗留临时文件: %s", path)
        return removed

    def _walk(self) -> Iterator[Path]:
        if not self.root.exists():
            return
        for dirpath, _dirs, files in os.walk(self.root):
            for f in files:
                yield Path(dirpath) / f

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    def read_entries(self, name: str) -> dict[str, MirrorIndexEntry]:
        """读取某包的全部索引条目，按版本排序；无法解析的行丢弃并告警"""
        path = self.index_path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise IoError(f"读取索引失败 {path}: {e}") from e

        entries: dict[str, MirrorIndexEntry] = {}
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entry = MirrorIndexEntry.from_json_line(line)
            except ValueError as e:
                logger.warning("索引 %s 第 %d 行无法解析，已忽略: %s", path, lineno, e)
                continue
            entries[entry.vers] = entry
        return dict(sorted(entries.items(), key=lambda kv: _version_key(kv[0])))

    def get_entry(self, name: str, version: str) -> MirrorIndexEntry | None:
        return self.read_entries(name).get(version)

    def has_valid_entry(self, name: str, version: str, expected_checksum: str) -> bool:
        """归档与索引条目都存在、条目 cksum 等于预期、归档摘要等于该 cksum

        每次调用都重新计算归档摘要，不信任上一次运行的结果。
        """
        try:
            entry = self.get_entry(name, version)
        except IoError as e:
            logger.warning("  %s", e)
            return False
        except ValueError as e:
            logger.warning("  包名不合法 %s@%s: %s", name, version, e)
            return False
        if entry is None:
            logger.debug("  无索引条目: %s@%s", name, version)
            return False
        if entry.cksum.lower() != expected_checksum.lower():
            logger.debug("  索引校验和与锁文件不一致: %s@%s", name, version)
            return False
        try:
            ok = self.verifier.verify_file(self.archive_path(name, version), expected_checksum)
        except OSError as e:
            logger.warning("  读取归档失败 %s@%s: %s", name, version, e)
            return False
        except ValueError as e:
            logger.warning("  无法校验 %s@%s: %s", name, version, e)
            return False
        if not ok:
            logger.warning("  归档缺失或内容被改动: %s@%s", name, version)
        return ok

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def commit(self, descriptor: PackageDescriptor, data: bytes) -> MirrorIndexEntry:
        """提交一个已校验的归档并合并索引条目

        Raises:
            ChecksumMismatch: 内容与 descriptor.checksum 不符（写入前后各校验一次）
            IoError: 目录写入失败
        """
        self.verifier.verify(data, descriptor.checksum)
        with self._lock_for(descriptor.name):
            self._commit_archive(descriptor, data)
            return self._commit_index(descriptor)

    def _commit_archive(self, descriptor: PackageDescriptor, data: bytes) -> None:
        final = self.archive_path(descriptor.name, descriptor.vers)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=f".{final.name}.", suffix=".tmp")
        except OSError as e:
            raise IoError(f"无法创建临时文件 {self.root}: {e}") from e
        tmp_path = Path(tmp)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # 落盘后再校验一次，防止写入过程中的损坏
            if not self.verifier.verify_file(tmp_path, descriptor.checksum):
                raise IoError(f"写入后校验失败: {tmp_path}")
            os.replace(tmp_path, final)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise IoError(f"写入归档失败 {final}: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("  归档已提交: %s", final)

    def _commit_index(self, descriptor: PackageDescriptor) -> MirrorIndexEntry:
        entries = self.read_entries(descriptor.name)
        existing = entries.get(descriptor.vers)
        if existing is not None and existing.cksum.lower() == descriptor.checksum.lower():
            logger.debug("  索引条目未变化: %s", descriptor)
            return existing

        entry = MirrorIndexEntry.from_descriptor(
            descriptor, yanked=existing.yanked if existing is not None else False,
        )
        if existing is not None:
            logger.warning(
                "  修正索引校验和: %s %s -> %s", descriptor, existing.cksum, entry.cksum,
            )
        entries[entry.vers] = entry
        self._write_index(descriptor.name, entries)
        return entry

    def _write_index(self, name: str, entries: dict[str, MirrorIndexEntry]) -> None:
        path = self.index_path(name)
        ordered = sorted(entries.values(), key=lambda e: _version_key(e.vers))
        content = "".join(e.to_json_line() + "\n" for e in ordered)
        try:
            atomic_write(path, content)
        except OSError as e:
            raise IoError(f"写入索引失败 {path}: {e}") from e
        logger.debug("  索引已更新: %s (%d 个版本)", path, len(ordered))

    def set_yanked(self, name: str, version: str, yanked: bool = True) -> bool:
        """设置/取消 yank 标记，返回是否有变化；包名不合法或条目不存在时抛 ValidationError"""
        if not is_valid_name(name):
            raise ValidationError(f"包名不合法: {name!r}")
        with self._lock_for(name):
            entries = self.read_entries(name)
            entry = entries.get(version)
            if entry is None:
                raise ValidationError(f"镜像中不存在 {name}@{version}")
            if entry.yanked == yanked:
                return False
            entry.yanked = yanked
            self._write_index(name, entries)
        logger.info("%s %s@%s", "已 yank" if yanked else "已取消 yank", name, version)
        return True

    # ------------------------------------------------------------------
    # 巡检
    # ------------------------------------------------------------------

    def list_packages(self) -> dict[str, list[MirrorIndexEntry]]:
        """扫描 index/ 目录，返回 {包名: 条目列表}"""
        index_root = self.root / INDEX_DIR
        result: dict[str, list[MirrorIndexEntry]] = {}
        if not index_root.exists():
            return result
        for path in sorted(index_root.rglob("*")):
            if not path.is_file() or is_temp_file(path) or path.name == MARKER_FILE:
                continue
            if not is_valid_name(path.name):
                logger.warning("索引目录中存在无法识别的文件: %s", path)
                continue
            entries = self.read_entries(path.name)
            if entries:
                result[path.name] = list(entries.values())
        return result

    def audit(self) -> list[str]:
        """检查每个条目与归档是否一致，返回问题描述列表（空列表表示健康）"""
        problems: list[str] = []
        referenced: set[str] = set()
        for entries in self.list_packages().values():
            for entry in entries:
                try:
                    archive = self.archive_path(entry.name, entry.vers)
                except ValueError as e:
                    problems.append(f"{entry.name}@{entry.vers}: 条目无效 ({e})")
                    continue
                referenced.add(archive.name)
                if not archive.exists():
                    problems.append(f"{entry.name}@{entry.vers}: 归档缺失 ({archive.name})")
                    continue
                try:
                    ok = self.verifier.verify_file(archive, entry.cksum)
                except ValueError as e:
                    problems.append(f"{entry.name}@{entry.vers}: 索引校验和无效 ({e})")
                    continue
                if not ok:
                    problems.append(f"{entry.name}@{entry.vers}: 归档摘要与索引不符")
        for path in sorted(self.root.glob(f"*{ARCHIVE_SUFFIX}")):
            if path.name not in referenced and parse_archive_filename(path.name):
                problems.append(f"{path.name}: 归档没有对应的索引条目")
        for path in self._walk():
            if is_temp_file(path):
                problems.append(f"{path.relative_to(self.root)}: 遗留临时文件")
        return problems
