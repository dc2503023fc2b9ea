"""CLI — 同步命令"""

from __future__ import annotations

import json
import sys

import click

from cratemirror.core.config import DEFAULT_CONFIG_FILE, Config
from cratemirror.core.exceptions import (
    ConfigError,
    IoError,
    MalformedLockDocument,
    UnresolvedDependency,
)

EXIT_OK = 0
EXIT_PACKAGE_FAILED = 1
EXIT_LOCK_ERROR = 2


def register(group: click.Group) -> None:
    group.add_command(sync)


def _registry_id(host: str) -> str:
    return host if "+" in host.split("://", 1)[0] else f"registry+{host}"


@click.command()
@click.argument("lockfile", type=click.Path(dir_okay=False))
@click.argument("mirror_dir", type=click.Path(file_okay=False))
@click.option("--config", "config_path", default=DEFAULT_CONFIG_FILE, help="配置文件路径")
@click.option("--continue-on-error", is_flag=True, help="单个包失败时继续同步其余包")
@click.option("--jobs", "-j", type=int, default=None, help="并行拉取数")
@click.option("--retries", type=int, default=None, help="失败后额外重试次数")
@click.option("--timeout", type=float, default=None, help="单次请求超时（秒）")
@click.option("--host", default=None, help="被替换的上游注册表索引地址（写入 cargo 配置片段）")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出同步结果")
def sync(
    lockfile: str, mirror_dir: str, config_path: str,
    continue_on_error: bool, jobs: int | None, retries: int | None,
    timeout: float | None, host: str | None, as_json: bool,
) -> None:
    """按锁文件把依赖包同步到本地镜像目录"""
    from cratemirror.core.orchestrator import cargo_config_snippet, sync_lockfile

    try:
        base = Config.from_file(config_path)
        cfg = base.override(
            continue_on_error=continue_on_error or None, jobs=jobs, retries=retries, timeout=timeout,
            default_registry=_registry_id(host) if host else None,
        )
    except ConfigError as e:
        click.echo(f"配置错误: {e}", err=True)
        sys.exit(EXIT_LOCK_ERROR)

    try:
        report = sync_lockfile(lockfile, mirror_dir, cfg)
    except (MalformedLockDocument, UnresolvedDependency) as e:
        click.echo(f"锁文件错误: {e}", err=True)
        sys.exit(EXIT_LOCK_ERROR)
    except IoError as e:
        click.echo(f"镜像目录错误: {e}", err=True)
        sys.exit(EXIT_PACKAGE_FAILED)

    if as_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        click.echo(f"新增 {report.added}, 跳过 {report.skipped}, 失败 {report.failed}")
    for f in report.failures:
        click.echo(f"  失败 [{f.kind.value}] {f.name}@{f.version}: {f.reason}", err=True)
    if report.aborted:
        click.echo("同步已中止（使用 --continue-on-error 可跳过失败的包）", err=True)

    if not report.success:
        sys.exit(EXIT_PACKAGE_FAILED)
    if not as_json:
        click.echo("\n在 .cargo/config.toml 中加入:\n")
        click.echo(cargo_config_snippet(mirror_dir, cfg.default_registry))
