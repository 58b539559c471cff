"""Log analysis: classify TeX engine console output into diagnostics."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Literal, Optional, Union

from texcycle.models import LogEntry, ParseResult

Bucket = Literal["errors", "warnings", "typesetting"]

# TeX hard-wraps console and log output at this column
LOG_WRAP_LIMIT = 79
# Lines searched after an error banner for its ``l.<N>`` marker
ERROR_CONTEXT_WINDOW = 30
MAX_FILE_DEPTH = 256

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

_LINE_MARKER = re.compile(r"^l\.(\d+)(?:\s|$)")
_ON_INPUT_LINE = re.compile(r"on input line (\d+)")
_ANY_LINE = re.compile(r"\bline (\d+)")
_BOX_LINES = re.compile(r"at lines? (\d+)")
_BOX_DETAIL = re.compile(r"^(?:\s*\[\]|\.|\\[hv]box\()")

_PAREN = re.compile(r"[()]")
_PATH_TOKEN = re.compile(r'"([^"]+)"|([^\s()"]+)')
_EXTENSION = re.compile(r"\.[A-Za-z][A-Za-z0-9]*$")

_ERROR_BANNER = re.compile(r"^!\s*(.*)$")


class FileStack:
    """Files the engine currently has open, as announced by ``(`` and ``)``.

    Parentheses that do not introduce a file name are pushed as anonymous
    markers so that their closing ``)`` does not pop a real file.
    """

    def __init__(self, max_depth: int = MAX_FILE_DEPTH) -> None:
        self.max_depth = max_depth
        self._entries: list[Optional[str]] = []
        self._overflow = 0

    @property
    def current(self) -> str:
        """Innermost open file, or an empty string when unknown."""
        for entry in reversed(self._entries):
            if entry is not None:
                return entry
        return ""

    @property
    def depth(self) -> int:
        return len(self._entries) + self._overflow

    def push(self, name: Optional[str]) -> None:
        if len(self._entries) >= self.max_depth:
            self._overflow += 1
        else:
            self._entries.append(name)

    def pop(self) -> None:
        if self._overflow:
            self._overflow -= 1
        elif self._entries:
            self._entries.pop()
        # An unmatched ")" is ignored

    def update(self, line: str) -> None:
        """Apply every file open/close marker found in ``line``."""
        pos = 0
        while True:
            match = _PAREN.search(line, pos)
            if match is None:
                return
            if match.group() == ")":
                self.pop()
                pos = match.end()
                continue

            token = _PATH_TOKEN.match(line, match.end())
            name = _file_name(token)
            self.push(name)
            pos = token.end() if name else match.end()


def _file_name(token: Optional[re.Match[str]]) -> Optional[str]:
    """Return the path a ``(`` token announces, if it looks like one."""
    if token is None:
        return None
    text = token.group(1) or token.group(2)
    if "/" in text or _EXTENSION.search(text):
        return text
    return None


class LogCursor:
    """Position within the prepared log lines plus the open-file context.

    Extractors may move ``index`` forward to consume the lines that belong to
    a multi-line diagnostic; consumed lines are not scanned for file markers.
    """

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.index = 0
        self.files = FileStack()

    @property
    def line(self) -> str:
        return self.lines[self.index]

    @property
    def current_file(self) -> str:
        return self.files.current

    def peek(self, offset: int = 1) -> Optional[str]:
        position = self.index + offset
        if 0 <= position < len(self.lines):
            return self.lines[position]
        return None

    def take_line_marker(self, window: int = ERROR_CONTEXT_WINDOW) -> tuple[Optional[int], list[str]]:
        """Consume the context lines of an error up to its ``l.<N>`` marker.

        The search stops at the next ``!`` banner. When no marker is found
        nothing is consumed and the line number is ``None``.
        """
        end = min(len(self.lines), self.index + 1 + window)
        for position in range(self.index + 1, end):
            text = self.lines[position]
            if text.startswith("!"):
                break
            match = _LINE_MARKER.match(text)
            if match is None:
                continue
            stop = position + 1
            # TeX prints the unread rest of the source line indented below the marker
            if stop < len(self.lines) and self.lines[stop][:1].isspace() and self.lines[stop].strip():
                stop += 1
            context = self.lines[self.index + 1 : stop]
            self.index = stop - 1
            return int(match.group(1)), context
        return None, []


# An extractor turns a matching line (and possibly the lines after it) into an entry
Extractor = Callable[[re.Match[str], LogCursor], Optional[LogEntry]]


@dataclass(frozen=True)
class LogRule:
    """A classification rule: lines matching ``pattern`` go to ``bucket``."""

    name: str
    bucket: Bucket
    pattern: re.Pattern[str]
    extract: Extractor


def _extract_error(match: re.Match[str], cursor: LogCursor) -> LogEntry:
    """Handle ``!`` error banners."""
    banner = cursor.line
    file = cursor.current_file
    line, context = cursor.take_line_marker()
    return LogEntry(
        message=match.group(1).strip(),
        file=file,
        line=line,
        raw="\n".join([banner, *context]),
    )


def _extract_runaway(match: re.Match[str], cursor: LogCursor) -> LogEntry:
    """Handle ``Runaway argument?`` followed by the argument and its error banner."""
    start = cursor.index
    for offset in (1, 2):
        following = cursor.peek(offset)
        if following is None:
            break
        banner = _ERROR_BANNER.match(following)
        if banner is None:
            continue
        cursor.index += offset
        entry = _extract_error(banner, cursor)
        prefix = "\n".join(cursor.lines[start : start + offset])
        return replace(entry, raw=f"{prefix}\n{entry.raw}")

    raw = [cursor.line]
    if cursor.peek() is not None:
        cursor.index += 1
        raw.append(cursor.line)
    return LogEntry(
        message=match.group(0).strip(),
        file=cursor.current_file,
        raw="\n".join(raw),
    )


def _extract_warning(match: re.Match[str], cursor: LogCursor) -> LogEntry:
    """Handle LaTeX, font, package and class warnings including continuations."""
    origin, package, text = match.group(1), match.group(2), match.group(3)
    if package:
        prefix: Optional[str] = f"({package})"
        parts = [cursor.line.strip()]
    else:
        prefix = "(Font)" if origin == "LaTeX Font" else None
        parts = [text.strip()]

    raw = [cursor.line]
    file = cursor.current_file
    while True:
        following = cursor.peek()
        if following is None:
            break
        if prefix is not None and following.startswith(prefix):
            continuation = following[len(prefix) :]
        elif prefix is None and following[:1].isspace() and following.strip():
            # Plain LaTeX warnings continue on indented lines
            continuation = following
        else:
            break
        cursor.index += 1
        raw.append(following)
        parts.append(continuation.strip())

    message = " ".join(part for part in parts if part)
    line_match = _ON_INPUT_LINE.search(message) or _ANY_LINE.search(message)
    return LogEntry(
        message=message,
        file=file,
        line=int(line_match.group(1)) if line_match else None,
        raw="\n".join(raw),
    )


def _extract_bad_box(match: re.Match[str], cursor: LogCursor) -> LogEntry:
    """Handle overfull/underfull box reports and skip the box dump below them."""
    message = match.group(0).strip()
    file = cursor.current_file
    raw = [cursor.line]
    while True:
        following = cursor.peek()
        if following is None or not following.strip() or not _BOX_DETAIL.match(following):
            break
        cursor.index += 1
        raw.append(following)

    line_match = _BOX_LINES.search(message)
    return LogEntry(
        message=message,
        file=file,
        line=int(line_match.group(1)) if line_match else None,
        raw="\n".join(raw),
    )


DEFAULT_RULES: tuple[LogRule, ...] = (
    LogRule(
        "pdftex-warning",
        "warnings",
        re.compile(r"^!\s*(pdfTeX warning.*)$"),
        _extract_error,
    ),
    LogRule(
        "runaway-argument",
        "errors",
        re.compile(r"^Runaway (?:argument|definition|preamble|text)\?"),
        _extract_runaway,
    ),
    LogRule("tex-error", "errors", _ERROR_BANNER, _extract_error),
    LogRule(
        "latex-warning",
        "warnings",
        re.compile(r"^(?:(LaTeX(?: Font)?)|(?:Package|Class) (\S+)) Warning: (.*)$"),
        _extract_warning,
    ),
    LogRule(
        "bad-box",
        "typesetting",
        re.compile(r"^(?:Over|Under)full \\[hv]box\b.*$"),
        _extract_bad_box,
    ),
)


def prepare_lines(raw_text: Union[str, bytes]) -> list[str]:
    """Split engine output into clean lines, undoing TeX's 79-column wrapping.

    ANSI escape sequences and other control bytes are removed.
    """
    if isinstance(raw_text, bytes):
        raw_text = raw_text.decode("utf-8", errors="replace")
    if not raw_text:
        return []

    lines: list[str] = []
    # Fragments of the logical line currently being unwrapped
    parts: list[str] = []
    for raw_line in raw_text.split("\n"):
        line = _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", raw_line))
        parts.append(line)
        if len(line) != LOG_WRAP_LIMIT or line.endswith("..."):
            lines.append("".join(parts))
            parts = []
    if parts:
        lines.append("".join(parts))
    return lines


class LogParser:
    """Classifies TeX engine output into errors, warnings and typesetting issues."""

    def __init__(self, rules: Optional[Iterable[LogRule]] = None) -> None:
        """Initialize the parser with ``rules`` or the default rule set."""
        self.rules: list[LogRule] = list(DEFAULT_RULES if rules is None else rules)

    def add_rule(self, rule: LogRule, index: Optional[int] = None) -> None:
        """Add a new classification rule.

        Args:
            rule: The rule to register
            index: Position in the rule list; rules are tried in order and the
                first match wins. Appends when omitted.
        """
        if index is None:
            self.rules.append(rule)
        else:
            self.rules.insert(index, rule)

    def parse(self, raw_text: Union[str, bytes], ignore_duplicates: bool = False) -> ParseResult:
        """Parse the output of one engine run.

        Args:
            raw_text: Captured engine output, possibly empty
            ignore_duplicates: Drop entries whose (file, line, message) already
                appears in the same list

        Returns:
            A ParseResult; lines matching no rule are ignored
        """
        result = ParseResult()
        seen: dict[str, set[LogEntry]] = {"errors": set(), "warnings": set(), "typesetting": set()}
        cursor = LogCursor(prepare_lines(raw_text))

        while cursor.index < len(cursor.lines):
            line = cursor.line
            for rule in self.rules:
                match = rule.pattern.match(line)
                if match is None:
                    continue
                try:
                    entry = rule.extract(match, cursor)
                except Exception:
                    # A failing rule drops its entry but never the whole parse
                    entry = None
                if entry is not None:
                    self._add(result, rule.bucket, entry, seen if ignore_duplicates else None)
                break
            else:
                cursor.files.update(line)
            cursor.index += 1

        return result

    @staticmethod
    def _add(
        result: ParseResult,
        bucket: Bucket,
        entry: LogEntry,
        seen: Optional[dict[str, set[LogEntry]]],
    ) -> None:
        if seen is not None:
            if entry in seen[bucket]:
                return
            seen[bucket].add(entry)
        getattr(result, bucket).append(entry)


# Global parser instance; parsing keeps its state in a per-call cursor
_parser = LogParser()


def parse_log(raw_text: Union[str, bytes], ignore_duplicates: bool = False) -> ParseResult:
    """Classify TeX engine output into diagnostics.

    This is the main entry point for log analysis.

    Args:
        raw_text: The captured engine output
        ignore_duplicates: Suppress repeated (file, line, message) entries

    Returns:
        A ParseResult with errors, warnings and typesetting lists
    """
    return _parser.parse(raw_text, ignore_duplicates=ignore_duplicates)
