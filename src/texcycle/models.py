"""Data models for texcycle diagnostics, options and compilation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

StepKind = Literal["latex", "bibtex", "crop", "png", "open"]


@dataclass(frozen=True)
class LogEntry:
    """A single diagnostic extracted from engine output.

    Equality and hashing only consider ``(file, line, message)``; ``raw`` keeps
    the log lines the entry was built from.
    """

    message: str
    file: str = ""
    line: Optional[int] = None
    raw: str = field(default="", compare=False)

    @property
    def location(self) -> str:
        """Render ``file:line``, using ``?`` for unknown parts."""
        return f"{self.file or '?'}:{self.line if self.line is not None else '?'}"

    def to_dict(self) -> dict:
        """Convert entry to a dictionary for JSON serialization."""
        return {
            "file": self.file,
            "line": self.line,
            "message": self.message,
            "raw": self.raw,
        }


@dataclass
class ParseResult:
    """Classified diagnostics of one engine pass."""

    errors: list[LogEntry] = field(default_factory=list)
    warnings: list[LogEntry] = field(default_factory=list)
    typesetting: list[LogEntry] = field(default_factory=list)

    @property
    def citation_warnings(self) -> list[LogEntry]:
        """Warnings about unresolved citations."""
        return [w for w in self.warnings if "Citation" in w.message]

    def counts(self) -> dict[str, int]:
        return {
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "citation_warnings": len(self.citation_warnings),
            "typesetting": len(self.typesetting),
        }

    def to_dict(self) -> dict:
        """Convert result to a dictionary for JSON serialization."""
        return {
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "typesetting": [t.to_dict() for t in self.typesetting],
            "counts": self.counts(),
        }


@dataclass
class CompileOptions:
    """Configuration for one compile pipeline."""

    engine: str = "pdflatex"
    engine_options: str = "-shell-escape -halt-on-error"
    bibtex: bool = True
    strict: bool = False
    open_pdf: bool = False
    crop: bool = False
    png: bool = False
    png_dpi: int = 300
    timeout: Optional[int] = None
    ignore_duplicates: bool = True
    clean: bool = True
    copy_command: bool = True


@dataclass
class StepResult:
    """Outcome of one external command in the pipeline."""

    name: str
    kind: StepKind
    command: list[str]
    return_code: int
    output: str = ""
    report: Optional[ParseResult] = None

    @property
    def ok(self) -> bool:
        return self.return_code == 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "command": self.command,
            "return_code": self.return_code,
            "report": self.report.to_dict() if self.report else None,
        }


@dataclass
class CompileResult:
    """Result of a full compile pipeline."""

    success: bool
    tex_path: Optional[Path] = None
    pdf_path: Optional[Path] = None
    steps: list[StepResult] = field(default_factory=list)
    message: str = ""

    @property
    def final_report(self) -> Optional[ParseResult]:
        """Diagnostics of the last engine pass, if any ran."""
        for step in reversed(self.steps):
            if step.kind == "latex" and step.report is not None:
                return step.report
        return None

    def to_dict(self) -> dict:
        """Convert result to a dictionary for JSON serialization."""
        final = self.final_report
        return {
            "success": self.success,
            "tex_path": str(self.tex_path) if self.tex_path else None,
            "pdf_path": str(self.pdf_path) if self.pdf_path else None,
            "message": self.message,
            "steps": [s.to_dict() for s in self.steps],
            "report": final.to_dict() if final else None,
        }
