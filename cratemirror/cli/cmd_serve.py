"""CLI — 只读 HTTP 服务"""

from __future__ import annotations

import click


def register(group: click.Group) -> None:
    group.add_command(serve)


@click.command()
@click.argument("mirror_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--host", default="127.0.0.1", help="监听地址")
@click.option("--port", default=8080, help="监听端口")
def serve(mirror_dir: str, host: str, port: int) -> None:
    """以 sparse 协议对外提供镜像（只读，不访问上游）"""
    from cratemirror.web.app import run_server
    run_server(mirror_dir, port=port, host=host)
