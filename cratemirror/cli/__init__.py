"""cratemirror 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from cratemirror import __version__
from cratemirror.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="输出 DEBUG 级别日志")
def main(verbose: bool) -> None:
    """cratemirror - 按锁文件同步离线 crate 镜像"""
    setup_logging(
        level="DEBUG" if verbose else os.getenv("CRATEMIRROR_LOG_LEVEL", "INFO"),
        json_output=os.getenv("CRATEMIRROR_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from cratemirror.cli.cmd_sync import register as _reg_sync  # noqa: E402
from cratemirror.cli.cmd_registry import register as _reg_registry  # noqa: E402
from cratemirror.cli.cmd_serve import register as _reg_serve  # noqa: E402

_reg_sync(main)
_reg_registry(main)
_reg_serve(main)
