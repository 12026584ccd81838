"""modpull 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
全局选项在 main 中合并进 Config，子命令通过 ctx.obj 取得。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

import click

from modpull import __version__
from modpull.core.config import Config, init_config
from modpull.core.exceptions import ModPullError
from modpull.utils.logger import setup_logging


def _manager(ctx: click.Context):
    """用当前配置构造 ModManager"""
    from modpull.core.mod_manager import ModManager
    with handle_errors():
        return ModManager(ctx.find_object(Config))


@contextmanager
def handle_errors() -> Iterator[None]:
    """把领域异常转换为带错误码的 CLI 错误"""
    try:
        yield
    except ModPullError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="modpull.yml", help="配置文件路径")
@click.option("--mods-dir", default=None, type=click.Path(file_okay=False), help="模组目录")
@click.option("-m", "--mirror-priority", default=None, help="镜像优先级，逗号分隔，如 gb,jade")
@click.option("-j", "--jobs", default=None, type=int, help="并发下载数 (1-6)")
@click.option("--use-api-mirror", is_flag=True, default=False, help="从 API 镜像拉取远程数据库")
@click.option("-v", "--verbose", is_flag=True, default=False, help="输出调试日志")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str,
    mods_dir: str | None,
    mirror_priority: str | None,
    jobs: int | None,
    use_api_mirror: bool,
    verbose: bool,
) -> None:
    """modpull - 多镜像模组包下载与依赖解析"""
    setup_logging(
        level="DEBUG" if verbose else os.getenv("MODPULL_LOG_LEVEL", "INFO"),
        json_output=os.getenv("MODPULL_LOG_JSON", "") == "1",
    )
    with handle_errors():
        cfg = init_config(config_path)
    if mods_dir is not None:
        cfg.mods_dir = mods_dir
    if mirror_priority is not None:
        cfg.mirror_priority = mirror_priority
    if jobs is not None:
        cfg.jobs = jobs
    if use_api_mirror:
        cfg.use_api_mirror = True
    with handle_errors():
        cfg.validate()
    ctx.obj = cfg


# 注册各领域子命令
from modpull.cli.cmd_mods import register as _reg_mods  # noqa: E402
from modpull.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_mods(main)
_reg_cache(main)
