"""CLI — 镜像目录管理命令（初始化、巡检、yank、列表）"""

from __future__ import annotations

import sys

import click

from cratemirror.core.exceptions import IoError, ValidationError
from cratemirror.core.store import MirrorStore


def register(group: click.Group) -> None:
    group.add_command(create)
    group.add_command(verify)
    group.add_command(yank)
    group.add_command(list_packages)


def _existing_store(mirror_dir: str) -> MirrorStore:
    store = MirrorStore(mirror_dir)
    if not store.root.is_dir():
        click.echo(f"镜像目录不存在: {mirror_dir}", err=True)
        sys.exit(1)
    return store


@click.command()
@click.argument("mirror_dir", type=click.Path(file_okay=False))
def create(mirror_dir: str) -> None:
    """初始化空的本地注册表（标记文件 + index/ 目录）"""
    try:
        written = MirrorStore(mirror_dir).ensure_registry_marker()
    except IoError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    click.echo(f"注册表已创建: {mirror_dir}" if written else f"注册表已存在: {mirror_dir}")


@click.command()
@click.argument("mirror_dir", type=click.Path(file_okay=False))
def verify(mirror_dir: str) -> None:
    """重新计算每个归档的摘要，检查索引与归档是否一致"""
    problems = _existing_store(mirror_dir).audit()
    if not problems:
        click.echo("镜像一致，未发现问题。")
        return
    for p in problems:
        click.echo(f"  {p}", err=True)
    click.echo(f"发现 {len(problems)} 个问题", err=True)
    sys.exit(1)


@click.command()
@click.argument("mirror_dir", type=click.Path(file_okay=False))
@click.argument("name")
@click.argument("version")
@click.option("--undo", is_flag=True, help="取消 yank 标记")
def yank(mirror_dir: str, name: str, version: str, undo: bool) -> None:
    """标记某个版本为 yanked（只打标记，不删除归档）"""
    store = _existing_store(mirror_dir)
    try:
        changed = store.set_yanked(name, version, not undo)
    except (ValidationError, IoError) as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    action = "取消 yank" if undo else "yank"
    click.echo(f"已{action}: {name}@{version}" if changed else f"无需变更: {name}@{version}")


@click.command(name="list")
@click.argument("mirror_dir", type=click.Path(file_okay=False))
def list_packages(mirror_dir: str) -> None:
    """列出镜像中的包与版本"""
    packages = _existing_store(mirror_dir).list_packages()
    if not packages:
        click.echo("镜像中没有任何包。")
        return
    for name, entries in packages.items():
        versions = ", ".join(e.vers + (" (yanked)" if e.yanked else "") for e in entries)
        click.echo(f"  {name:30s} {versions}")
