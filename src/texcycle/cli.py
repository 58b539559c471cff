"""CLI interface for texcycle."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from texcycle import __version__
from texcycle.core import Compiler
from texcycle.models import CompileOptions, CompileResult
from texcycle.report import ConsoleReporter
from texcycle.watcher import LatexWatcher

app = typer.Typer(
    name="texcycle",
    help="Compile LaTeX documents through the engine/bibtex/engine cycle and summarize the log",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"texcycle {__version__}")
        raise typer.Exit()


def _configure_logging(debug: bool) -> logging.Logger:
    """Configure stdlib logging once and return the application logger."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("texcycle")


def _fail(message: str, json_output: bool, tex_path: Optional[Path] = None) -> None:
    """Report an invalid invocation and exit with status 1."""
    if json_output:
        result = CompileResult(success=False, tex_path=tex_path, message=message)
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        typer.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _watch(target: Path, compiler: Compiler, console: Console, logger: logging.Logger) -> None:
    """Recompile whenever a watched source file changes."""
    if target.is_file():
        tex_path = target.resolve()
        directory = tex_path.parent

        def recompile(path: Path) -> None:
            console.print(f"Recompiling because {path} changed")
            compiler.compile(tex_path)
            # Only launch the viewer for the first build
            compiler.options.open_pdf = False

        watcher = LatexWatcher(directory, recompile, target=tex_path, logger=logger.getChild("watcher"))
    else:
        directory = target.resolve()

        def recompile(path: Path) -> None:
            console.print(f"Recompiling because {path} changed")
            compiler.compile(path)
            compiler.options.open_pdf = False

        watcher = LatexWatcher(directory, recompile, logger=logger.getChild("watcher"))

    console.print(f"Watching for {directory}")
    watcher.run_forever()


@app.command()
def main(
    target: Annotated[
        Path,
        typer.Argument(help="Top level .tex file, or a directory in --watch mode"),
    ],
    cmd: Annotated[
        str,
        typer.Argument(help="Compile command", envvar="TEXCYCLE_ENGINE"),
    ] = "pdflatex",
    opts: Annotated[
        str,
        typer.Argument(help="Options passed to the compiler", envvar="TEXCYCLE_ENGINE_OPTIONS"),
    ] = "-shell-escape -halt-on-error",
    nobibtex: Annotated[bool, typer.Option("--nobibtex", help="Don't run bibtex")] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Stop when bibtex returns a non-zero exit code"),
    ] = False,
    open_pdf: Annotated[bool, typer.Option("--open", help="Open pdf file when generated")] = False,
    watch: Annotated[bool, typer.Option("--watch", help="Recompile when sources change")] = False,
    notrunc: Annotated[bool, typer.Option("--notrunc", help="Don't truncate command line output")] = False,
    nocopy: Annotated[bool, typer.Option("--nocopy", help="Don't copy the compile command to the clipboard")] = False,
    silent: Annotated[bool, typer.Option("--silent", help="Suppress error listings")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show all warnings and errors")] = False,
    crop: Annotated[bool, typer.Option("--crop", help="Crop the pdf margins with pdfcrop")] = False,
    png: Annotated[bool, typer.Option("--png", help="Convert the pdf to PNG images with pdftoppm")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output result as JSON")] = False,
    timeout: Annotated[
        Optional[int],
        typer.Option("--timeout", "-t", help="Maximum time per command in seconds"),
    ] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging")] = False,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit"),
    ] = None,
) -> None:
    """Compile a LaTeX document: engine, bibtex, then the engine twice more.

    Examples:
        texcycle paper.tex
        texcycle paper.tex xelatex "-halt-on-error" --nobibtex
        texcycle paper.tex --watch --open
        texcycle . --watch
    """
    logger = _configure_logging(debug)

    options = CompileOptions(
        engine=cmd,
        engine_options=opts,
        bibtex=not nobibtex,
        strict=strict,
        open_pdf=open_pdf,
        crop=crop,
        png=png,
        timeout=timeout,
        copy_command=not nocopy,
    )
    console = Console(highlight=False, quiet=json_output and not watch)
    reporter = ConsoleReporter(console, silent=silent, verbose=verbose, truncate=not notrunc)
    compiler = Compiler(options, logger=logger.getChild("core"), reporter=reporter)

    if watch:
        if not target.exists():
            _fail(f"Target not found: {target}", json_output=False)
        _watch(target, compiler, console, logger)
        return

    tex_path = target.resolve()
    if not tex_path.exists():
        _fail(f"Input file not found: {tex_path}", json_output, tex_path)
    if not tex_path.is_file():
        _fail(f"Input path is not a file: {tex_path}", json_output, tex_path)

    result = compiler.compile(tex_path)

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.success else 2)

    if result.success:
        if result.pdf_path:
            console.print(f"OK: {result.pdf_path}")
        sys.exit(0)

    typer.echo(f"Compilation failed: {result.message}", err=True)
    sys.exit(2)


if __name__ == "__main__":
    app()
