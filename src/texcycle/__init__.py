"""texcycle: run the LaTeX/bibtex compile cycle and summarize the engine log."""

from __future__ import annotations

from texcycle.analysis import LogParser, LogRule, parse_log
from texcycle.core import Compiler, compile_tex
from texcycle.models import CompileOptions, CompileResult, LogEntry, ParseResult, StepResult

__version__ = "0.1.0"
__all__ = [
    "compile_tex",
    "parse_log",
    "Compiler",
    "CompileOptions",
    "CompileResult",
    "LogEntry",
    "LogParser",
    "LogRule",
    "ParseResult",
    "StepResult",
]
