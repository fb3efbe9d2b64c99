"""Keyboard input for the interactive menus.

Everything above this module talks to a `Terminal`: `read_key()` returns one decoded
keypress and `ask()` reads a line of free text. `PosixTerminal` implements both on a
POSIX tty; tests drive the menus with a scripted implementation instead.
"""

import codecs
import os
import select
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Protocol, TextIO

from rich.console import Console

try:
    import termios
    import tty

    _HAS_TERMIOS = True
except ImportError:
    _HAS_TERMIOS = False

# Seconds to wait for the rest of an escape sequence after ESC
ESCAPE_TIMEOUT = 0.05

ESC = "\x1b"


class KeyKind(Enum):
    """Decoded key."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    ENTER = "enter"
    ESCAPE = "escape"
    CHAR = "char"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class KeyPress:
    kind: KeyKind
    char: str = ""

    def is_char(self, *chars: str) -> bool:
        """Check for a literal character, ignoring case."""
        return self.kind is KeyKind.CHAR and self.char.lower() in {c.lower() for c in chars}


_ARROWS = {
    "A": KeyKind.UP,
    "B": KeyKind.DOWN,
    "C": KeyKind.RIGHT,
    "D": KeyKind.LEFT,
}


def decode_key(first: str, more: Callable[[], str]) -> KeyPress:
    """Decode one keypress.

    Args:
        first: The character that was read
        more: Returns the next pending character, or "" once the lookahead times out
    """
    if first in ("\r", "\n"):
        return KeyPress(KeyKind.ENTER)
    if first == ESC:
        introducer = more()
        if introducer not in ("[", "O"):
            return KeyPress(KeyKind.ESCAPE)
        code = more()
        if code in _ARROWS:
            return KeyPress(_ARROWS[code])
        if code.isdigit():
            # Sequences such as ESC [ 3 ~ carry parameters; consume up to the final byte
            while code and (code.isdigit() or code == ";"):
                code = more()
            return KeyPress(KeyKind.UNKNOWN)
        return KeyPress(KeyKind.ESCAPE)
    if len(first) == 1 and first.isprintable():
        return KeyPress(KeyKind.CHAR, first)
    return KeyPress(KeyKind.UNKNOWN)


def is_yes(answer: Optional[str]) -> bool:
    """Anything but an explicit y/yes is a no."""
    return answer is not None and answer.strip().lower() in ("y", "yes")


class Terminal(Protocol):
    """Input side of the menus."""

    def read_key(self) -> KeyPress:
        """Block until one key is pressed."""
        ...

    def ask(self, prompt: str, required: bool = False) -> Optional[str]:
        """Read a line of text. Returns None when cancelled with Escape."""
        ...


class PosixTerminal:
    """Terminal on a POSIX tty, using cbreak mode for single keypresses."""

    def __init__(self, console: Console, stream: Optional[TextIO] = None) -> None:
        if not _HAS_TERMIOS:
            raise RuntimeError("Interactive mode needs a POSIX terminal")
        self.console = console
        self.stream = stream or sys.stdin
        self.fd = self.stream.fileno()

    @contextmanager
    def _cbreak(self) -> Iterator[None]:
        """No echo and no line buffering; the saved attributes are always restored."""
        saved = termios.tcgetattr(self.fd)
        try:
            tty.setcbreak(self.fd)
            yield
        finally:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, saved)

    def _read_char(self, timeout: Optional[float] = None) -> str:
        """Read one character, however many bytes it takes. "" means end of input or timeout."""
        if timeout is not None:
            ready, _, _ = select.select([self.fd], [], [], timeout)
            if not ready:
                return ""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            byte = os.read(self.fd, 1)
            if not byte:
                return decoder.decode(b"", final=True)
            char = decoder.decode(byte)
            if char:
                return char

    def _read_line(self) -> str:
        """Read up to the end of the line from the same unbuffered descriptor as the keys."""
        chars = []
        while True:
            char = self._read_char()
            if char in ("", "\n"):
                return "".join(chars).rstrip("\r")
            chars.append(char)

    def _drain(self) -> None:
        while self._read_char(ESCAPE_TIMEOUT):
            pass

    def read_key(self) -> KeyPress:
        with self._cbreak():
            first = self._read_char()
            if not first:
                # End of input
                return KeyPress(KeyKind.ESCAPE)
            return decode_key(first, lambda: self._read_char(ESCAPE_TIMEOUT))

    def ask(self, prompt: str, required: bool = False) -> Optional[str]:
        while True:
            self.console.print(prompt, end="")
            with self._cbreak():
                first = self._read_char()
                if first == ESC:
                    self._drain()
            if first in (ESC, ""):
                self.console.print()
                return None
            if first in ("\r", "\n"):
                answer = ""
                self.console.print()
            else:
                # The first character was read without echo
                self.console.print(first, end="")
                answer = first + self._read_line()
            if answer.strip() or not required:
                return answer.strip()
            self.console.print("[red]A value is required (Esc to cancel)[/red]")


def press_any_key(console: Console, terminal: Terminal) -> None:
    console.print("[bright_black]Press any key to continue...[/bright_black]")
    terminal.read_key()
