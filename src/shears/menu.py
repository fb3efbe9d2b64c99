"""Full-screen selection menu driven by single keypresses."""

from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, Sequence, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from shears.terminal import KeyKind, Terminal

T = TypeVar("T")

NAVIGATION_HINT = "↑/↓ to navigate, Enter to select, Esc to go back"


@dataclass
class MenuState(Generic[T]):
    """Items on screen, the highlighted one, and how many actions completed."""

    items: list[T]
    selected: int = 0
    completed: int = 0

    def __post_init__(self) -> None:
        self.clamp()

    @property
    def current(self) -> Optional[T]:
        return self.items[self.selected] if self.items else None

    def clamp(self) -> None:
        self.selected = max(0, min(self.selected, len(self.items) - 1))

    def move_up(self) -> bool:
        """Move the highlight up. Returns whether it moved."""
        if self.selected > 0:
            self.selected -= 1
            return True
        return False

    def move_down(self) -> bool:
        """Move the highlight down. Returns whether it moved."""
        if self.selected < len(self.items) - 1:
            self.selected += 1
            return True
        return False

    def complete_selected(self) -> T:
        """Drop the highlighted item after its action succeeded."""
        item = self.items.pop(self.selected)
        self.completed += 1
        self.clamp()
        return item

    def remove(self, item: T) -> None:
        """Drop a specific item, keeping the highlight on the same entry where possible."""
        index = self.items.index(item)
        self.items.pop(index)
        self.completed += 1
        if index < self.selected:
            self.selected -= 1
        self.clamp()


@dataclass(frozen=True)
class MenuChoice:
    """Result of a menu: the highlighted index and the hotkey, if one was pressed."""

    index: int
    key: Optional[str] = None


@dataclass
class MenuView(Generic[T]):
    """How to draw a menu."""

    title: str
    label: Callable[[T], str] = str
    detail: Optional[Callable[[T], Optional[str]]] = None
    header: Optional[Callable[[], str]] = None
    footer: str = NAVIGATION_HINT
    hotkeys: Sequence[str] = field(default_factory=tuple)
    numbered: bool = False


def render(console: Console, view: MenuView[T], state: MenuState[T]) -> None:
    console.clear()
    console.print(Panel(f"[bold]{escape(view.title)}[/bold]", style="blue", expand=False, padding=(0, 2)))
    if view.header:
        console.print(view.header())
    console.print()
    for index, item in enumerate(state.items):
        text = escape(view.label(item))
        prefix = f"{index + 1}. " if view.numbered and index < 9 else ""
        if index == state.selected:
            console.print(f"[green]▶ {prefix}[cyan]{text}[/cyan][/green]")
        else:
            console.print(f"  {prefix}{text}")
        extra = view.detail(item) if view.detail else None
        if extra:
            console.print(f"    [bright_black]{escape(extra)}[/bright_black]")
    console.print()
    console.print(f"[yellow]{view.footer}[/yellow]")


def run_menu(console: Console, terminal: Terminal, view: MenuView[T], state: MenuState[T]) -> Optional[MenuChoice]:
    """Let the user pick an item.

    Moves `state.selected` as the user navigates. Returns None when cancelled or when
    there is nothing to choose from.
    """
    if not state.items:
        return None
    hotkeys = {key.lower() for key in view.hotkeys}
    render(console, view, state)
    while True:
        key = terminal.read_key()
        if key.kind is KeyKind.UP:
            if state.move_up():
                render(console, view, state)
        elif key.kind is KeyKind.DOWN:
            if state.move_down():
                render(console, view, state)
        elif key.kind in (KeyKind.ENTER, KeyKind.RIGHT):
            return MenuChoice(state.selected)
        elif key.kind in (KeyKind.ESCAPE, KeyKind.LEFT):
            return None
        elif key.kind is KeyKind.CHAR:
            char = key.char.lower()
            if char in hotkeys:
                return MenuChoice(state.selected, char)
            if view.numbered and char.isdigit() and 1 <= int(char) <= min(len(state.items), 9):
                state.selected = int(char) - 1
                return MenuChoice(state.selected)
        # Anything else is ignored


def select(
    console: Console,
    terminal: Terminal,
    title: str,
    items: Sequence[T],
    initial_index: int = 0,
    label: Callable[[T], str] = str,
    detail: Optional[Callable[[T], Optional[str]]] = None,
) -> Optional[int]:
    """Pick one item from a numbered menu. Returns its index, or None if cancelled."""
    state = MenuState(list(items), initial_index)
    view = MenuView(title=title, label=label, detail=detail, numbered=True)
    choice = run_menu(console, terminal, view, state)
    return None if choice is None else choice.index
