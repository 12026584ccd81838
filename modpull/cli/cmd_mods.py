"""CLI - 模组安装、更新与查看命令"""

from __future__ import annotations

import click

from modpull.cli import _manager, handle_errors
from modpull.core.dep.models import InstallPlan, PlanAction
from modpull.core.mod_manager import ModManager


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(update)
    group.add_command(list_mods)
    group.add_command(manifest)


def _echo_plan(plan: InstallPlan) -> None:
    if not plan.steps and not plan.failures:
        click.echo("没有需要处理的包。")
    for ref in plan.references:
        if ref.resolved_id != ref.source:
            click.echo(f"  {ref.source} -> {ref.resolved_id}")
    for step in plan:
        click.echo(f"  [{step.action.value:7s}] {step.describe()}")
    for opt in plan.optional:
        state = "已安装" if opt.installed else "未安装"
        constraint = f"@{opt.version_constraint}" if opt.version_constraint else ""
        click.echo(f"  [可选]    {opt.package_id}{constraint} ({opt.required_by} 建议, {state})")
    for name, reason in plan.failures:
        click.echo(f"  [失败]    {name}: {reason}", err=True)


def _apply(mm: ModManager, plan: InstallPlan) -> None:
    with handle_errors():
        written = mm.apply(plan)
    for path in written:
        click.echo(f"已写入: {path}")
    if not plan.complete:
        raise click.ClickException(f"{len(plan.failures)} 个包下载失败")


@click.command()
@click.argument("references", nargs=-1, required=True)
@click.pass_context
def install(ctx: click.Context, references: tuple[str, ...]) -> None:
    """安装包及其依赖（包名、模组页面链接或下载链接）"""
    mm = _manager(ctx)
    with handle_errors():
        plan = mm.plan_install(references)
    _echo_plan(plan)
    _apply(mm, plan)


@click.command()
@click.option("--dry-run", is_flag=True, default=False, help="只显示计划，不写入")
@click.pass_context
def update(ctx: click.Context, dry_run: bool) -> None:
    """检查并更新已安装的包"""
    mm = _manager(ctx)
    with handle_errors():
        plan = mm.plan_update()
    _echo_plan(plan)
    pending = plan.by_action(PlanAction.UPDATE) + plan.by_action(PlanAction.INSTALL)
    if dry_run:
        click.echo(f"共 {len(pending)} 个包待更新（未写入）")
        return
    _apply(mm, plan)


@click.command(name="list")
@click.pass_context
def list_mods(ctx: click.Context) -> None:
    """列出已安装的包"""
    mm = _manager(ctx)
    index = mm.installed()
    if not len(index):
        click.echo("没有已安装的包。")
        return
    for pkg in index:
        click.echo(f"  {pkg.name:30s} {pkg.version:12s} {pkg.archive_path.name}")


@click.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def manifest(ctx: click.Context, archive: str) -> None:
    """显示本地归档中的清单"""
    mm = _manager(ctx)
    with handle_errors():
        m = mm.inspect_manifest(archive)
    click.echo(f"名称: {m.id}")
    click.echo(f"版本: {m.version}")
    if m.dll:
        click.echo(f"DLL:  {m.dll}")
    for dep in m.dependencies:
        kind = "可选" if dep.optional else "依赖"
        click.echo(f"  {kind}: {dep.id} {dep.version_constraint or ''}".rstrip())
