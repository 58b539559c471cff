"""File watcher for recompiling on change."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer

WATCHED_PATTERNS = ["*.tex", "*.bib"]
IGNORED_PATTERNS = ["*/.*", "*~"]


def should_recompile(path: Path, target: Optional[Path]) -> bool:
    """Whether a change to ``path`` warrants a new compilation.

    With a file target every ``.tex``/``.bib`` change counts, and so does the
    target itself. Without one only ``.tex`` files are compiled.
    """
    if target is None:
        return path.suffix == ".tex"
    return path == target or path.suffix in (".tex", ".bib")


class LatexWatcher:
    """Watches a directory and runs ``on_change`` for relevant file changes.

    Changes are debounced, and at most one ``on_change`` call runs at a time.
    Changes arriving while a compilation is in flight are queued and run once
    it finishes, so the last save is always compiled.
    """

    def __init__(
        self,
        directory: Path,
        on_change: Callable[[Path], None],
        target: Optional[Path] = None,
        debounce: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ):
        self.directory = directory.resolve()
        self.on_change = on_change
        self.target = target.resolve() if target else None
        self.debounce = debounce
        self.logger = logger or logging.getLogger("texcycle.watcher")
        self.observer: Optional[Observer] = None
        self._debounce_timer: Optional[threading.Timer] = None
        self._state = threading.Lock()
        self._running = False
        # Ordered set of paths changed during the current compilation
        self._pending: dict[Path, None] = {}

    def start(self) -> None:
        """Start watching for file changes."""
        if self.observer:
            return

        patterns = list(WATCHED_PATTERNS)
        if self.target is not None:
            patterns.append(str(self.target))
        handler = LatexFileHandler(self._on_event, patterns)
        self.observer = Observer()
        self.observer.schedule(handler, str(self.directory), recursive=True)
        self.observer.start()
        self.logger.info("Watching %s", self.directory)

    def stop(self) -> None:
        """Stop watching."""
        if self._debounce_timer:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def run_forever(self) -> None:
        """Watch until interrupted with Ctrl-C."""
        self.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _on_event(self, src_path: str) -> None:
        """Handle file change with debouncing."""
        path = Path(src_path).resolve()
        if not should_recompile(path, self.target):
            return

        if self._debounce_timer:
            self._debounce_timer.cancel()

        self._debounce_timer = threading.Timer(self.debounce, self.trigger, args=[path])
        self._debounce_timer.daemon = True
        self._debounce_timer.start()

    def trigger(self, path: Path) -> bool:
        """Run ``on_change`` for ``path`` unless a run is already in flight.

        A change that arrives during a run is queued; the running call then
        handles it before returning.

        Returns:
            True if this call ran the callback, False if the change was queued
        """
        with self._state:
            if self._running:
                if self.target is not None:
                    # Every change recompiles the same target
                    self._pending.clear()
                self._pending[path] = None
                self.logger.info("Compilation already running; queued change to %s", path)
                return False
            self._running = True

        try:
            while True:
                self.on_change(path)
                with self._state:
                    if not self._pending:
                        self._running = False
                        return True
                    path = next(iter(self._pending))
                    del self._pending[path]
        except BaseException:
            with self._state:
                self._running = False
                self._pending.clear()
            raise


class LatexFileHandler(PatternMatchingEventHandler):
    """Handler for LaTeX source changes."""

    def __init__(self, callback: Callable[[str], None], patterns: list[str]):
        super().__init__(
            patterns=patterns,
            ignore_patterns=IGNORED_PATTERNS,
            ignore_directories=True,
        )
        self.callback = callback

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        self.callback(str(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        self.callback(str(event.src_path))
