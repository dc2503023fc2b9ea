"""同步编排器

对锁文件中的每个包执行:
  Pending -> Skipped                          镜像中已有且校验通过，不访问网络
  Pending -> Fetching -> Verifying -> Committed
  任一步失败 -> Failed（按 transport / checksum / io 分类）

失败策略只属于编排器: ABORT（默认）在第一个失败后停止，CONTINUE 记录后继续。
jobs > 1 时仅拉取并行；校验与提交始终在编排线程上按排序顺序执行。
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from cratemirror.core.config import Config, get_config
from cratemirror.core.exceptions import ChecksumMismatch, IoError, TransportError
from cratemirror.core.fetcher import UpstreamFetcher
from cratemirror.core.lockfile import LockDocumentReader
from cratemirror.core.models import (
    FailureKind,
    PackageDescriptor,
    PackageState,
    SyncFailure,
    SyncReport,
)
from cratemirror.core.store import MirrorStore
from cratemirror.core.verifier import ArchiveVerifier
from cratemirror.utils.net import split_source_id

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    ABORT = "abort"
    CONTINUE = "continue"


class SyncOrchestrator:
    """按锁文件内容把包同步进镜像"""

    def __init__(
        self,
        fetcher: UpstreamFetcher,
        verifier: ArchiveVerifier | None = None,
        *,
        policy: FailurePolicy = FailurePolicy.ABORT,
        jobs: int = 1,
    ) -> None:
        self.fetcher = fetcher
        self.verifier = verifier or ArchiveVerifier()
        self.policy = policy
        self.jobs = max(1, jobs)
        self.states: dict[PackageDescriptor, PackageState] = {}

    def _transition(self, desc: PackageDescriptor, state: PackageState) -> None:
        self.states[desc] = state
        logger.debug(
            "  %s -> %s", desc, state.value, extra={"package": str(desc), "state": state.value},
        )

    def sync(self, descriptors: Iterable[PackageDescriptor], store: MirrorStore) -> SyncReport:
        """执行一次同步，返回本次运行的汇总"""
        report = SyncReport()
        ordered = sorted(descriptors, key=lambda d: d.sort_key)
        self.states = {}
        for desc in ordered:
            self._transition(desc, PackageState.PENDING)

        store.ensure_registry_marker()
        store.sweep_temp_files()

        todo: list[PackageDescriptor] = []
        for desc in ordered:
            if store.has_valid_entry(desc.name, desc.vers, desc.checksum):
                self._transition(desc, PackageState.SKIPPED)
                report.skipped += 1
            else:
                todo.append(desc)

        logger.info("同步开始: %d 个包, %d 个已是最新, %d 个待拉取", len(ordered), report.skipped, len(todo))
        if self.jobs == 1 or len(todo) <= 1:
            for desc in todo:
                if not self._process(desc, lambda d=desc: self._fetch(d), store, report):
                    break
        else:
            self._run_parallel(todo, store, report)

        logger.info(
            "同步结束: 新增 %d, 跳过 %d, 失败 %d%s",
            report.added, report.skipped, report.failed, " (已中止)" if report.aborted else "",
        )
        return report

    def _fetch(self, desc: PackageDescriptor) -> bytes:
        self._transition(desc, PackageState.FETCHING)
        return self.fetcher.fetch(desc)

    def _run_parallel(self, todo: list[PackageDescriptor], store: MirrorStore, report: SyncReport) -> None:
        with ThreadPoolExecutor(max_workers=self.jobs) as executor:
            futures: list[Future[bytes]] = [executor.submit(self.fetcher.fetch, d) for d in todo]
            try:
                for desc, future in zip(todo, futures):
                    self._transition(desc, PackageState.FETCHING)
                    if not self._process(desc, future.result, store, report):
                        break
            finally:
                # 中止或中断时，尚未开始的拉取直接取消
                for future in futures:
                    future.cancel()

    def _process(
        self, desc: PackageDescriptor, get_data: Callable[[], bytes],
        store: MirrorStore, report: SyncReport,
    ) -> bool:
        """拉取结果 -> 校验 -> 提交；返回是否继续处理后续包"""
        try:
            data = get_data()
            self._transition(desc, PackageState.VERIFYING)
            self.verifier.verify(data, desc.checksum)
            store.commit(desc, data)
        except TransportError as e:
            return self._fail(desc, FailureKind.TRANSPORT, e, report)
        except ChecksumMismatch as e:
            return self._fail(desc, FailureKind.CHECKSUM, e, report)
        except IoError as e:
            return self._fail(desc, FailureKind.IO, e, report)

        self._transition(desc, PackageState.COMMITTED)
        report.added += 1
        logger.info("  已同步: %s", desc)
        return True

    def _fail(self, desc: PackageDescriptor, kind: FailureKind, err: Exception, report: SyncReport) -> bool:
        self._transition(desc, PackageState.FAILED)
        report.failures.append(SyncFailure(desc.name, desc.vers, kind, str(err)))
        logger.error("  同步失败 [%s] %s: %s", kind.value, desc, err)
        if self.policy is FailurePolicy.ABORT:
            report.aborted = True
            logger.error("失败策略为 abort，停止同步")
            return False
        return True


def cargo_config_snippet(mirror_dir: str | Path, registry: str) -> str:
    """生成让 cargo 使用本地镜像的 .cargo/config.toml 片段"""
    _kind, url = split_source_id(registry)
    return (
        "[source.crates-io]\n"
        f"registry = '{url}'\n"
        "replace-with = 'local-registry'\n"
        "\n"
        "[source.local-registry]\n"
        f"local-registry = '{Path(mirror_dir).resolve()}'\n"
    )


def sync_lockfile(
    lock_path: str | Path, mirror_dir: str | Path, config: Config | None = None,
    *, fetcher: UpstreamFetcher | None = None,
) -> SyncReport:
    """解析锁文件并同步到镜像目录

    Raises:
        MalformedLockDocument / UnresolvedDependency: 锁文件无效，未做任何拉取
        IoError: 镜像目录无法初始化
    """
    cfg = config or get_config()
    descriptors = LockDocumentReader().parse(lock_path)
    orchestrator = SyncOrchestrator(
        fetcher or UpstreamFetcher(cfg),
        policy=FailurePolicy.CONTINUE if cfg.continue_on_error else FailurePolicy.ABORT,
        jobs=cfg.jobs,
    )
    return orchestrator.sync(descriptors, MirrorStore(mirror_dir))
