"""Tests for the compile pipeline."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pyperclip
import pytest

from texcycle.core import (
    Compiler,
    auxiliary_files,
    build_engine_command,
    build_viewer_command,
    clean_auxiliary_files,
    compile_tex,
)
from texcycle.models import CompileOptions


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


@pytest.fixture
def mock_tex_file(tmp_path: Path) -> Path:
    """Create a temporary .tex file for testing."""
    tex_file = tmp_path / "test.tex"
    tex_file.write_text(r"\documentclass{article}\begin{document}Test\cite{a}\end{document}")
    return tex_file.resolve()


@pytest.fixture
def pdf_file(mock_tex_file: Path) -> Path:
    """Simulate the PDF a successful engine run leaves behind."""
    pdf_path = mock_tex_file.with_suffix(".pdf")
    pdf_path.write_text("fake pdf content")
    return pdf_path


def test_compile_file_not_found() -> None:
    """Test that a missing input file fails without running anything."""
    result = compile_tex(Path("/nonexistent/file.tex"))
    assert not result.success
    assert result.pdf_path is None
    assert result.steps == []
    assert "not found" in result.message


def test_compile_directory_input(tmp_path: Path) -> None:
    """Test that a directory is rejected as input."""
    result = compile_tex(tmp_path)
    assert not result.success
    assert "not a file" in result.message


@patch("texcycle.core.subprocess.run")
def test_full_cycle(mock_subprocess: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test the engine, bibtex, engine, engine sequence."""
    mock_subprocess.return_value = _completed(
        stdout="LaTeX Warning: Citation `a' on page 1 undefined on input line 3.\n"
    )

    result = compile_tex(mock_tex_file)

    assert result.success
    assert result.pdf_path == pdf_file
    commands = [c.args[0] for c in mock_subprocess.call_args_list]
    engine = ["pdflatex", "-shell-escape", "-halt-on-error", "test.tex"]
    assert commands == [engine, ["bibtex", "test"], engine, engine]
    assert all(c.kwargs["cwd"] == mock_tex_file.parent for c in mock_subprocess.call_args_list)

    assert [s.name for s in result.steps] == ["latex", "bibtex", "latex (rerun 1)", "latex (rerun 2)"]
    assert result.steps[1].report is None
    assert result.final_report is result.steps[-1].report
    assert len(result.final_report.citation_warnings) == 1


@patch("texcycle.core.subprocess.run")
def test_nobibtex(mock_subprocess: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test that disabling bibtex runs the engine once."""
    mock_subprocess.return_value = _completed()

    result = compile_tex(mock_tex_file, CompileOptions(bibtex=False, engine="xelatex", engine_options=""))

    assert result.success
    mock_subprocess.assert_called_once()
    assert mock_subprocess.call_args.args[0] == ["xelatex", "test.tex"]


@patch("texcycle.core.subprocess.run")
def test_engine_failure_stops_pipeline(mock_subprocess: Mock, mock_tex_file: Path) -> None:
    """Test that a failed engine pass stops the cycle but keeps its diagnostics."""
    mock_subprocess.return_value = _completed(
        returncode=1,
        stdout="(./test.tex\n! Undefined control sequence.\nl.5 \\foo\n",
    )

    result = compile_tex(mock_tex_file)

    assert not result.success
    mock_subprocess.assert_called_once()
    assert len(result.steps) == 1
    errors = result.steps[0].report.errors
    assert [(e.file, e.line, e.message) for e in errors] == [("./test.tex", 5, "Undefined control sequence.")]
    assert "latex failed" in result.message


@patch("texcycle.core.subprocess.run")
def test_bibtex_failure_is_tolerated(mock_subprocess: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test that bibtex failures do not stop the cycle by default."""
    mock_subprocess.side_effect = [_completed(), _completed(returncode=2), _completed(), _completed()]

    result = compile_tex(mock_tex_file)

    assert result.success
    assert mock_subprocess.call_count == 4
    assert result.steps[1].return_code == 2


@patch("texcycle.core.subprocess.run")
def test_bibtex_failure_is_fatal_when_strict(mock_subprocess: Mock, mock_tex_file: Path) -> None:
    """Test that strict mode stops on a bibtex failure."""
    mock_subprocess.side_effect = [_completed(), _completed(returncode=2)]

    result = compile_tex(mock_tex_file, CompileOptions(strict=True))

    assert not result.success
    assert mock_subprocess.call_count == 2
    assert result.steps[-1].name == "bibtex"


@patch("texcycle.core.subprocess.run")
def test_timeout(mock_subprocess: Mock, mock_tex_file: Path) -> None:
    """Test that a timed out command fails the step."""
    mock_subprocess.side_effect = subprocess.TimeoutExpired(cmd=["pdflatex"], timeout=5)

    result = compile_tex(mock_tex_file, CompileOptions(timeout=5))

    assert not result.success
    assert result.steps[0].return_code == 1
    assert "timed out" in result.steps[0].output
    assert mock_subprocess.call_args.kwargs["timeout"] == 5


@patch("texcycle.core.subprocess.run")
def test_engine_not_found(mock_subprocess: Mock, mock_tex_file: Path) -> None:
    """Test that a missing executable becomes a failed step."""
    mock_subprocess.side_effect = FileNotFoundError("pdflatex")

    result = compile_tex(mock_tex_file)

    assert not result.success
    assert result.steps[0].return_code == 127
    assert result.final_report is not None
    assert result.final_report.errors == []


@patch("texcycle.core.subprocess.run")
def test_crop_and_png_commands(mock_subprocess: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test the optional post-processing steps."""
    mock_subprocess.return_value = _completed()

    result = compile_tex(mock_tex_file, CompileOptions(bibtex=False, crop=True, png=True, png_dpi=150))

    assert result.success
    commands = [c.args[0] for c in mock_subprocess.call_args_list]
    assert commands[1] == ["pdfcrop", "test.pdf", "test.pdf"]
    assert commands[2] == ["pdftoppm", "-png", "-r", "150", "test.pdf", "test"]


@patch("texcycle.core.platform.system", return_value="Linux")
@patch("texcycle.core.subprocess.run")
def test_open_pdf_on_linux(mock_subprocess: Mock, mock_system: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test that the PDF is opened with xdg-open on Linux."""
    mock_subprocess.return_value = _completed()

    result = compile_tex(mock_tex_file, CompileOptions(bibtex=False, open_pdf=True))

    assert result.success
    assert mock_subprocess.call_args.args[0] == ["xdg-open", str(pdf_file)]


@patch("texcycle.core.platform.system", return_value="Windows")
@patch("texcycle.core.subprocess.run")
def test_open_pdf_unsupported_platform(
    mock_subprocess: Mock,
    mock_system: Mock,
    mock_tex_file: Path,
    pdf_file: Path,
) -> None:
    """Test that unsupported platforms skip opening without failing."""
    mock_subprocess.return_value = _completed()

    result = compile_tex(mock_tex_file, CompileOptions(bibtex=False, open_pdf=True))

    assert result.success
    mock_subprocess.assert_called_once()


def test_build_commands() -> None:
    """Test engine and viewer command construction."""
    options = CompileOptions(engine="lualatex", engine_options="-interaction=nonstopmode '-jobname=my doc'")
    assert build_engine_command(options, "paper.tex") == [
        "lualatex",
        "-interaction=nonstopmode",
        "-jobname=my doc",
        "paper.tex",
    ]
    assert build_viewer_command(Path("a.pdf"), system="Darwin") == ["open", "a.pdf"]
    assert build_viewer_command(Path("a.pdf"), system="Linux") == ["xdg-open", "a.pdf"]
    assert build_viewer_command(Path("a.pdf"), system="Windows") is None


def test_clean_auxiliary_files(mock_tex_file: Path, pdf_file: Path) -> None:
    """Test that build artifacts are removed and sources and PDF are kept."""
    directory = mock_tex_file.parent
    for name in ("test.aux", "test.log", "test.bbl", "test.1.vrb", "other.aux"):
        (directory / name).write_text("")
    (directory / "_minted-test").mkdir()
    (directory / "_minted-test" / "cache.pyg").write_text("")

    assert len(auxiliary_files(mock_tex_file)) == 5
    removed = clean_auxiliary_files(mock_tex_file)

    assert len(removed) == 5
    assert sorted(p.name for p in directory.iterdir()) == ["other.aux", "test.pdf", "test.tex"]


@patch("texcycle.core.subprocess.run")
def test_compile_cleans_after_run(mock_subprocess: Mock, mock_tex_file: Path) -> None:
    """Test that artifacts written during the run are removed afterwards."""
    aux = mock_tex_file.with_suffix(".aux")

    def engine(*args, **kwargs) -> MagicMock:
        aux.write_text("\\relax")
        return _completed(returncode=1)

    mock_subprocess.side_effect = engine

    result = compile_tex(mock_tex_file)

    assert not result.success
    assert not aux.exists()


@patch("texcycle.core.subprocess.run")
def test_reporter_notifications(mock_subprocess: Mock, mock_tex_file: Path, pdf_file: Path) -> None:
    """Test that the reporter sees every step."""
    mock_subprocess.side_effect = [_completed(), _completed(returncode=1), _completed(), _completed()]
    reporter = MagicMock()

    Compiler(CompileOptions(), reporter=reporter).compile(mock_tex_file)

    assert reporter.step.call_count == 4
    assert reporter.step.call_args_list[1].args[0] == "bibtex test"
    tolerated = [c.kwargs.get("tolerated", False) for c in reporter.finished.call_args_list]
    assert tolerated == [False, True, False, False]


@patch("texcycle.core.subprocess.run")
def test_engine_command_copied_to_clipboard(
    mock_subprocess: Mock,
    clipboard: Mock,
    mock_tex_file: Path,
    pdf_file: Path,
) -> None:
    """Test that the engine command is put on the clipboard before compiling."""
    mock_subprocess.return_value = _completed()

    compile_tex(mock_tex_file, CompileOptions(bibtex=False, engine_options="-jobname='my doc'"))

    clipboard.assert_called_once_with("pdflatex '-jobname=my doc' test.tex")


@patch("texcycle.core.subprocess.run")
def test_clipboard_failure_does_not_stop_compile(
    mock_subprocess: Mock,
    clipboard: Mock,
    mock_tex_file: Path,
    pdf_file: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that a host without a clipboard still compiles."""
    mock_subprocess.return_value = _completed()
    clipboard.side_effect = pyperclip.PyperclipException("no clipboard mechanism")

    with caplog.at_level(logging.WARNING, logger="texcycle.core"):
        result = compile_tex(mock_tex_file, CompileOptions(bibtex=False))

    assert result.success
    assert "no clipboard mechanism" in caplog.text


def test_clipboard_copy_can_be_disabled(clipboard: Mock, tmp_path: Path) -> None:
    """Test that copy_command=False leaves the clipboard alone."""
    tex = tmp_path / "a.tex"
    tex.write_text("")

    with patch("texcycle.core.subprocess.run", return_value=_completed()):
        compile_tex(tex, CompileOptions(bibtex=False, copy_command=False))

    clipboard.assert_not_called()
