# kconf/cli.py

import logging
import os
import sys
from functools import wraps

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import ConfigStore, StoreOptions
from .errors import ConfigError, StaleWriteError
from .utils import format_timestamp

# 创建一个 Rich Console 实例，用于美化输出
console = Console()
err_console = Console(stderr=True)


def error_panel(message: str) -> None:
    err_console.print(Panel(f"[bold red]❌ {message}[/bold red]",
                            title="[bold]错误[/bold]", expand=False, border_style="red"))


def with_store(f):
    """
    装饰器：在子命令的参数解析完成后才加载 ConfigStore，并作为第一个参数传入，
    同时把 kconf 的业务异常和 I/O 异常统一转换为错误面板和退出码 1。
    """
    @wraps(f)
    @click.pass_obj
    def wrapper(store: ConfigStore, *args, **kwargs):
        try:
            store.load()
        except (ConfigError, OSError) as e:
            error_panel(f"加载配置失败: {e}")
            sys.exit(1)
        try:
            return f(store, *args, **kwargs)
        except StaleWriteError:
            error_panel("保存失败：配置文件已被其它程序更新。\n\n"
                        "请重新运行命令以加载最新配置，或使用 --force 强制覆盖。")
            sys.exit(1)
        except (ConfigError, OSError) as e:
            error_panel(f"操作失败: {e}")
            sys.exit(1)
    return wrapper


def persist(store: ConfigStore) -> None:
    """根据 --force 选项选择 save() 或 force_save()。"""
    ctx = click.get_current_context()
    if ctx.find_root().params.get("force"):
        store.force_save()
    else:
        store.save()


@click.group()
@click.option('--dir', 'directory', envvar='KCONF_DIR', type=click.Path(file_okay=False),
              help="配置文件所在目录，默认按 XDG 规范解析。")
@click.option('--file', 'file_name', envvar='KCONF_FILE',
              help="配置文件名，默认 config.json（lines 格式为 values）。")
@click.option('--format', 'fmt', envvar='KCONF_FORMAT', type=click.Choice(['json', 'lines']),
              default='json', show_default=True, help="持久化格式。")
@click.option('--force', is_flag=True, help="保存时跳过冲突检测，直接覆盖。")
@click.option('-v', '--verbose', is_flag=True, help="输出调试日志。")
@click.pass_context
def main(ctx: click.Context, directory: str, file_name: str, fmt: str, force: bool, verbose: bool):
    """
    kconf: 管理本地的键值配置，并避免覆盖其它程序对同一配置的修改。
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG,
                            format="%(levelname)s %(name)s: %(message)s")

    # 只构造实例，不接触磁盘；--help 或被取消的确认不会创建配置文件
    ctx.obj = ConfigStore(directory, file_name, StoreOptions(codec=fmt))


@main.command()
@click.argument('key')
@with_store
def get(store: ConfigStore, key: str):
    """输出 KEY 的值（不存在时不输出）。"""
    value = store.get(key)
    if value:
        click.echo(value)


@main.command(name="set")
@click.argument('key')
@click.argument('value')
@with_store
def set_(store: ConfigStore, key: str, value: str):
    """设置 KEY 为 VALUE 并保存。"""
    store.set(key, value)
    persist(store)


@main.command()
@click.argument('key')
@with_store
def delete(store: ConfigStore, key: str):
    """删除 KEY 并保存。"""
    store.delete(key)
    persist(store)


@main.command()
@with_store
def save(store: ConfigStore):
    """保存当前配置。"""
    persist(store)


@main.command()
@click.confirmation_option(prompt="这会清空所有配置项，确定继续吗？")
@with_store
def init(store: ConfigStore):
    """清空配置文件中的所有数据。"""
    store.init()
    console.print(Panel(f"✅ 已重新初始化: [cyan]{store.path}[/cyan]", expand=False))


@main.command()
@with_store
def file(store: ConfigStore):
    """输出配置文件的绝对路径。"""
    click.echo(str(store.path))


@main.command(name="dir")
@with_store
def dir_(store: ConfigStore):
    """输出配置目录。"""
    click.echo(str(store.dir))


@main.command()
@with_store
def dump(store: ConfigStore):
    """按持久化格式原样输出配置。"""
    click.echo(store.serialize().decode("utf-8"), nl=False)
    if store.codec.name == "json":
        click.echo()


@main.command(name="print")
@with_store
def print_(store: ConfigStore):
    """以表格形式显示所有配置项。"""
    data = store.snapshot()
    if not data:
        console.print("[yellow]配置为空。[/yellow]")
        return

    table = Table(title=str(store.path))
    table.add_column("键", style="cyan", no_wrap=True, justify="right")
    table.add_column("值", style="magenta")
    for key in sorted(data):
        table.add_row(key, data[key])
    console.print(table)


@main.command()
@with_store
def saved(store: ConfigStore):
    """输出最后一次保存的时间。"""
    click.echo(format_timestamp(store.saved))


@main.command()
@with_store
def updated(store: ConfigStore):
    """输出最后一次修改的时间。"""
    click.echo(format_timestamp(store.updated))


def find_editor(store: ConfigStore):
    """依次查找配置中的 EDITOR 键、$EDITOR 和 $VISUAL；都没有时交给 click 决定。"""
    return (store.get("EDITOR") or os.environ.get("EDITOR")
            or os.environ.get("VISUAL") or None)


@main.command()
@with_store
def edit(store: ConfigStore):
    """用文本编辑器打开配置文件。"""
    click.edit(filename=str(store.path), editor=find_editor(store))
