"""CLI - 校验和缓存维护命令"""

from __future__ import annotations

import click

from modpull.cli import _manager


def register(group: click.Group) -> None:
    group.add_command(cache)


@click.group()
def cache() -> None:
    """校验和缓存维护"""


@cache.command(name="clear")
@click.pass_context
def clear_cache(ctx: click.Context) -> None:
    """删除持久化的校验和缓存"""
    mm = _manager(ctx)
    mm.clear_cache()
    click.echo(f"已清空: {mm.cache.store_path}")


@cache.command(name="prune")
@click.pass_context
def prune_cache(ctx: click.Context) -> None:
    """删除已不存在的归档对应的缓存记录"""
    removed = _manager(ctx).prune_cache()
    click.echo(f"已清理 {removed} 条记录")
