"""Core compilation pipeline for texcycle."""

from __future__ import annotations

import logging
import platform
import shlex
import shutil
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

import pyperclip

from texcycle.analysis import parse_log
from texcycle.models import CompileOptions, CompileResult, StepKind, StepResult

# Build artifacts removed before and after each run
AUXILIARY_SUFFIXES = (".aux", ".log", ".blg", ".bbl", ".out", ".pyg", ".toc", ".snm", ".nav")


class StepFailed(Exception):
    """Raised inside the pipeline when a step stops the compilation."""

    def __init__(self, step: StepResult) -> None:
        super().__init__(f"{step.name} failed with exit code {step.return_code}")
        self.step = step


class Reporter(Protocol):
    """Receives progress notifications from the pipeline."""

    def step(self, description: str) -> ContextManager[None]: ...

    def finished(self, step: StepResult, tolerated: bool = False) -> None: ...

    def notice(self, message: str) -> None: ...


class NullReporter:
    """Reporter that discards all notifications."""

    @contextmanager
    def step(self, description: str) -> Iterator[None]:
        yield

    def finished(self, step: StepResult, tolerated: bool = False) -> None:
        pass

    def notice(self, message: str) -> None:
        pass


def build_engine_command(options: CompileOptions, tex_name: str) -> list[str]:
    """Build the engine command line: ``ENGINE OPTIONS... TARGET``."""
    return [options.engine, *shlex.split(options.engine_options), tex_name]


def build_viewer_command(pdf_path: Path, system: Optional[str] = None) -> Optional[list[str]]:
    """Return the platform command that opens ``pdf_path``, if one is known."""
    system = system or platform.system()
    if system == "Darwin":
        return ["open", str(pdf_path)]
    if system == "Linux":
        return ["xdg-open", str(pdf_path)]
    return None


def auxiliary_files(tex_path: Path) -> list[Path]:
    """List the existing build artifacts that belong to ``tex_path``."""
    base = tex_path.stem
    directory = tex_path.parent
    paths = [directory / f"{base}{suffix}" for suffix in AUXILIARY_SUFFIXES]
    paths.extend(sorted(directory.glob(f"{base}.*.vrb")))
    paths.append(directory / f"_minted-{base}")
    return [p for p in paths if p.exists()]


def clean_auxiliary_files(tex_path: Path) -> list[Path]:
    """Delete the build artifacts of ``tex_path`` and return what was removed."""
    removed = []
    for path in auxiliary_files(tex_path):
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)
        removed.append(path)
    return removed


def run_command(
    command: list[str],
    cwd: Path,
    timeout: Optional[int] = None,
) -> tuple[int, str]:
    """Run an external command to completion.

    Args:
        command: Program and arguments
        cwd: Working directory
        timeout: Maximum execution time in seconds (None for no timeout)

    Returns:
        Tuple of (return_code, output). The output is stdout followed by
        stderr. A timeout yields return code 1, a missing executable 127.
    """
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return 1, f"Command timed out after {timeout} seconds"
    except FileNotFoundError:
        return 127, f"Executable not found: {command[0]}"
    return result.returncode, result.stdout + result.stderr


class Compiler:
    """Runs the engine/bibtex/engine/engine cycle on one document."""

    def __init__(
        self,
        options: CompileOptions,
        logger: Optional[logging.Logger] = None,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self.options = options
        self.logger = logger or logging.getLogger("texcycle.core")
        self.reporter = reporter or NullReporter()

    def compile(self, tex_path: Path) -> CompileResult:
        """Compile ``tex_path`` and return the outcome of every step.

        Args:
            tex_path: Path to the top-level .tex file

        Returns:
            CompileResult; process failures never raise
        """
        tex_path = tex_path.resolve()
        if not tex_path.exists():
            return CompileResult(success=False, tex_path=tex_path, message=f"Input file not found: {tex_path}")
        if not tex_path.is_file():
            return CompileResult(success=False, tex_path=tex_path, message=f"Input path is not a file: {tex_path}")

        steps: list[StepResult] = []
        pdf_path = tex_path.with_suffix(".pdf")
        self.logger.info("Compiling %s with %s", tex_path, self.options.engine)
        if self.options.copy_command:
            self._copy_to_clipboard(build_engine_command(self.options, tex_path.name))

        try:
            self._clean(tex_path)
            self._run_pipeline(tex_path, pdf_path, steps)
        except StepFailed as exc:
            self.logger.info("Stopping: %s", exc)
            return CompileResult(
                success=False,
                tex_path=tex_path,
                pdf_path=pdf_path if pdf_path.exists() else None,
                steps=steps,
                message=str(exc),
            )
        finally:
            self._clean(tex_path)

        return CompileResult(
            success=True,
            tex_path=tex_path,
            pdf_path=pdf_path if pdf_path.exists() else None,
            steps=steps,
        )

    def _run_pipeline(self, tex_path: Path, pdf_path: Path, steps: list[StepResult]) -> None:
        engine_command = build_engine_command(self.options, tex_path.name)
        cwd = tex_path.parent

        self._execute(steps, "latex", "latex", engine_command, cwd)

        if self.options.bibtex:
            self._execute(steps, "bibtex", "bibtex", ["bibtex", tex_path.stem], cwd)
            self._execute(steps, "latex (rerun 1)", "latex", engine_command, cwd)
            self._execute(steps, "latex (rerun 2)", "latex", engine_command, cwd)

        if self.options.crop:
            self._execute(steps, "crop", "crop", ["pdfcrop", pdf_path.name, pdf_path.name], cwd)

        if self.options.png:
            command = ["pdftoppm", "-png", "-r", str(self.options.png_dpi), pdf_path.name, tex_path.stem]
            self._execute(steps, "png", "png", command, cwd)

        if self.options.open_pdf:
            viewer = build_viewer_command(pdf_path)
            if viewer is None:
                self.logger.warning("Can't open pdfs on %s.", platform.system())
                self.reporter.notice(f"Can't open pdfs on {platform.system()}.")
            else:
                self._execute(steps, "open", "open", viewer, cwd)

    def _execute(
        self,
        steps: list[StepResult],
        name: str,
        kind: StepKind,
        command: list[str],
        cwd: Path,
    ) -> StepResult:
        """Run one step, report it and apply the failure policy."""
        self.logger.debug("Executing: %s", shlex.join(command))
        with self.reporter.step(shlex.join(command)):
            return_code, output = run_command(command, cwd, self.options.timeout)

        # Diagnostics are meaningful even when the engine exits non-zero
        report = parse_log(output, ignore_duplicates=self.options.ignore_duplicates) if kind == "latex" else None
        step = StepResult(name=name, kind=kind, command=command, return_code=return_code, output=output, report=report)
        steps.append(step)
        self.logger.debug("%s exited with %d", name, return_code)

        if step.ok:
            self.reporter.finished(step)
            return step

        if self._tolerates(kind):
            self.logger.warning("%s failed with exit code %d; continuing", name, return_code)
            self.reporter.finished(step, tolerated=True)
            return step

        self.reporter.finished(step)
        raise StepFailed(step)

    def _copy_to_clipboard(self, command: list[str]) -> None:
        """Put the engine command on the clipboard for rerunning it by hand."""
        try:
            pyperclip.copy(shlex.join(command))
        except pyperclip.PyperclipException as exc:
            self.logger.warning("Could not copy the command to the clipboard: %s", exc)

    def _tolerates(self, kind: StepKind) -> bool:
        return kind == "bibtex" and not self.options.strict

    def _clean(self, tex_path: Path) -> None:
        if not self.options.clean:
            return
        for path in clean_auxiliary_files(tex_path):
            self.logger.debug("Removed %s", path)


def compile_tex(
    tex_path: Path,
    options: Optional[CompileOptions] = None,
    logger: Optional[logging.Logger] = None,
) -> CompileResult:
    """Compile a LaTeX document with the default pipeline.

    Args:
        tex_path: Path to the input .tex file
        options: Pipeline configuration (defaults to pdflatex + bibtex)
        logger: Logger receiving progress messages

    Returns:
        CompileResult containing every step and its diagnostics
    """
    return Compiler(options or CompileOptions(), logger=logger).compile(tex_path)
