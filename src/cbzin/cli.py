"""CLI entry point for cbzin."""

import logging
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cbzin import __version__
from cbzin.config import (
    CbzinConfig,
    ConfigError,
    ConversionConfig,
    get_default_config,
    load_config,
    resolve_workers,
)
from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import ToolProvider
from cbzin.doctor import check_all_dependencies
from cbzin.errors import CbzinError, Interrupted, MissingToolsError, PreconditionError
from cbzin.logger import LogConfig, RunLogger, VerboseLevel
from cbzin.pipeline import ConversionPipeline, InputMode, PipelineConfig
from cbzin.stats import ImageStats, StatsReport, collect_stats
from cbzin.types import ExitCode

app = typer.Typer(help="コミックアーカイブ(cbz/zip)やディレクトリ内の画像形式を変換するCLIツール")
console = Console()


class FileLogLevel(str, Enum):
    """ログファイルの出力レベル"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.name)


def _load_settings(config_path: Path | None) -> CbzinConfig:
    """設定ファイルを読み込む（指定がない場合はデフォルト設定）"""
    if config_path is None:
        return get_default_config()
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(ExitCode.INVALID_INPUT) from e


def _input_paths(paths: list[Path] | None) -> tuple[Path, ...]:
    return tuple(paths) if paths else (Path("."),)


@app.command()
def convert(
    target: Annotated[ImageFormat, typer.Argument(help="変換先の画像形式")],
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="アーカイブ、またはアーカイブを含むディレクトリ（既定: カレント）"),
    ] = None,
    workers: Annotated[
        int | None, typer.Option("-j", "--workers", min=1, help="同時に実行するプロセス数")
    ] = None,
    force: Annotated[
        bool, typer.Option("-f", "--force", help="新しい形式同士の変換も行う")
    ] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="変換せずに件数のみ表示")] = False,
    no_archive: Annotated[
        bool, typer.Option("--no-archive", help="ディレクトリ内の画像を再帰的に変換する")
    ] = False,
    config: Annotated[Path | None, typer.Option("--config", help="設定ファイル(YAML)")] = None,
    log: Annotated[bool, typer.Option("--log", help="ログファイルを出力する")] = False,
    log_file: Annotated[
        Path | None, typer.Option("--log-file", help="ログファイル出力先（--logを含む）")
    ] = None,
    level: Annotated[
        FileLogLevel, typer.Option("--level", help="ログファイルの出力レベル")
    ] = FileLogLevel.INFO,
    verbose: Annotated[int, typer.Option("-v", "--verbose", count=True, help="詳細ログ出力")] = 0,
    quiet: Annotated[bool, typer.Option("-q", "--quiet", help="エラーのみ出力")] = False,
) -> None:
    """アーカイブまたはディレクトリ内の画像を変換する"""
    settings = _load_settings(config)
    if log and log_file is None:
        log_file = settings.log_file

    verbose_level = VerboseLevel.QUIET if quiet else VerboseLevel(min(verbose, VerboseLevel.DEBUG))
    log_config = LogConfig(
        verbose_level=verbose_level,
        log_file=log_file,
        file_level=level.logging_level,
    )
    conversion = ConversionConfig(
        target=target,
        workers=resolve_workers(workers, settings),
        force=force or settings.force,
    )
    mode = InputMode.DIRECTORIES if no_archive else InputMode.ARCHIVES
    pipeline_config = PipelineConfig(
        paths=_input_paths(paths),
        conversion=conversion,
        mode=mode,
        dry_run=dry_run,
    )

    with RunLogger(log_config) as run_logger:
        pipeline = ConversionPipeline(pipeline_config, tools=ToolProvider(settings.tools))
        try:
            run_logger.info(f"Looking for images to convert in {mode.value}...")
            jobs = pipeline.collect()
            if not jobs:
                run_logger.info("変換が必要なファイルはありません")
                raise typer.Exit(ExitCode.SUCCESS)

            pipeline.check_tools(jobs)
            run_logger.info(pipeline.summarize(jobs))
            if dry_run:
                raise typer.Exit(ExitCode.SUCCESS)

            result = pipeline.run(jobs, run_logger.create_progress())
        except MissingToolsError as e:
            run_logger.error(str(e))
            raise typer.Exit(ExitCode.DEPENDENCY_ERROR) from e
        except Interrupted as e:
            run_logger.error(str(e))
            raise typer.Exit(ExitCode.INTERRUPTED) from e
        except PreconditionError as e:
            run_logger.error(str(e))
            raise typer.Exit(ExitCode.INVALID_INPUT) from e
        except CbzinError as e:
            run_logger.error(str(e))
            raise typer.Exit(ExitCode.ERROR) from e

        for path in result.converted:
            run_logger.verbose(f"作成: {escape(str(path))}")
        if not result.success:
            run_logger.error(f"{len(result.failures)}件の変換に失敗しました")
            for failure in result.failures:
                run_logger.error(f"{failure.path}: {failure.error}")
            raise typer.Exit(ExitCode.ERROR)

        run_logger.info(f"[green]変換完了: {len(result.converted)}件[/green]")
        raise typer.Exit(ExitCode.SUCCESS)


def _stats_table(title: str, stats: ImageStats) -> Table:
    table = Table(title=title)
    table.add_column("形式", justify="left")
    table.add_column("画像数", justify="right")
    for image_format, count in stats.per_format():
        table.add_row(image_format.value, str(count))
    table.add_section()
    table.add_row("total", str(stats.total))
    return table


def _print_report(report: StatsReport, verbose: bool) -> None:
    kind = "archives" if report.mode is InputMode.ARCHIVES else "directories"
    console.print(f"Searched {report.searched} {kind}:")
    if verbose:
        for collection in report.collections:
            console.print(_stats_table(escape(collection.name), collection.stats))
    console.print(_stats_table("合計", report.total))


@app.command()
def stats(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="アーカイブ、またはアーカイブを含むディレクトリ（既定: カレント）"),
    ] = None,
    image_filter: Annotated[
        ImageFormat | None, typer.Option("--filter", help="指定した形式の画像のみ数える")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("-v", "--verbose", help="アーカイブ/ディレクトリごとに表示")
    ] = False,
    no_archive: Annotated[
        bool, typer.Option("--no-archive", help="ディレクトリ内の画像を再帰的に数える")
    ] = False,
) -> None:
    """画像の形式ごとの枚数を表示する"""
    mode = InputMode.DIRECTORIES if no_archive else InputMode.ARCHIVES
    # 統計情報の収集では変換先を使用しない
    config = PipelineConfig(
        paths=_input_paths(paths),
        conversion=ConversionConfig(target=ImageFormat.PNG),
        mode=mode,
    )

    console.print(f"Counting images in {mode.value}...")
    try:
        report = collect_stats(config, image_filter)
    except PreconditionError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(ExitCode.INVALID_INPUT) from e
    except CbzinError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(ExitCode.ERROR) from e
    except KeyboardInterrupt as e:
        raise typer.Exit(ExitCode.INTERRUPTED) from e

    _print_report(report, verbose)
    raise typer.Exit(ExitCode.SUCCESS)


@app.command()
def doctor() -> None:
    """依存ツールをチェックする"""
    results = check_all_dependencies()

    table = Table(title="依存ツールチェック結果")
    for header in ("ステータス", "ツール名", "バージョン", "必須", "メッセージ"):
        table.add_column(header)
    for result in results:
        table.add_row(
            "[green]✓[/green]" if result.found else "[red]✗[/red]",
            result.name,
            result.version or "-",
            "[yellow]必須[/yellow]" if result.required else "オプション",
            escape(result.message or ""),
        )
    console.print(table)

    if any(result.required and not result.found for result in results):
        console.print("\n[red]エラー: 必須ツールが不足しています[/red]")
        raise typer.Exit(ExitCode.DEPENDENCY_ERROR)
    console.print("\n[green]すべての必須ツールが利用可能です[/green]")
    raise typer.Exit(ExitCode.SUCCESS)


def version_callback(value: bool) -> None:
    """バージョン表示コールバック"""
    if value:
        typer.echo(f"cbzin {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="バージョンを表示する",
        ),
    ] = False,
) -> None:
    """cbzin CLI - コミックアーカイブの画像形式を変換"""
    pass
