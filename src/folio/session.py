"""Reader session state machine.

``transition(state, event)`` is a pure lookup into a table keyed by
``(mode, event type)``. It returns the next state and the effects the driver
must perform (start a load, render, close the book). Pairs missing from the
table leave the state unchanged and produce no effects.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Union

from .bookmarks import clamp_page_index


class Mode(str, Enum):
    HOME = "home"
    LOADING = "loading"
    READING = "reading"
    ERROR = "error"


class Landing(str, Enum):
    FIRST = "first"
    LAST = "last"


@dataclass(frozen=True)
class ReaderState:
    mode: Mode = Mode.HOME
    book_path: str | None = None
    book_open: bool = False
    chapter_index: int = 0
    chapter_count: int = 0
    page_index: int = 0
    page_count: int = 0
    landing: Landing = Landing.FIRST
    error: str | None = None


# Events


@dataclass(frozen=True)
class SelectBook:
    path: str
    chapter_index: int = 0
    page_index: int = 0


@dataclass(frozen=True)
class LoadSucceeded:
    chapter_index: int
    chapter_count: int
    page_count: int


@dataclass(frozen=True)
class LoadFailed:
    message: str


@dataclass(frozen=True)
class NextPage:
    pass


@dataclass(frozen=True)
class PrevPage:
    pass


@dataclass(frozen=True)
class GoHome:
    pass


@dataclass(frozen=True)
class DismissError:
    pass


@dataclass(frozen=True)
class Repaginated:
    page_count: int
    page_index: int | None = None


Event = Union[SelectBook, LoadSucceeded, LoadFailed, NextPage, PrevPage, GoHome, DismissError, Repaginated]


# Effects


@dataclass(frozen=True)
class StartOpen:
    path: str
    chapter_index: int


@dataclass(frozen=True)
class StartLoadChapter:
    chapter_index: int


@dataclass(frozen=True)
class RenderPage:
    chapter_index: int
    page_index: int


@dataclass(frozen=True)
class RenderHome:
    pass


@dataclass(frozen=True)
class ShowError:
    message: str


@dataclass(frozen=True)
class CloseBook:
    pass


Effect = Union[StartOpen, StartLoadChapter, RenderPage, RenderHome, ShowError, CloseBook]
Transition = tuple[ReaderState, tuple[Effect, ...]]


def _render(state: ReaderState) -> Transition:
    return state, (RenderPage(state.chapter_index, state.page_index),)


def _select_book(state: ReaderState, event: SelectBook) -> Transition:
    loading = ReaderState(
        mode=Mode.LOADING,
        book_path=event.path,
        chapter_index=event.chapter_index,
        page_index=event.page_index,
        error=None,
    )
    return loading, (StartOpen(event.path, event.chapter_index),)


def _load_succeeded(state: ReaderState, event: LoadSucceeded) -> Transition:
    if state.landing is Landing.LAST:
        page = event.page_count - 1
    elif state.book_open:
        page = 0
    else:
        # Fresh open: honour the page requested with the book.
        page = state.page_index
    reading = replace(
        state,
        mode=Mode.READING,
        book_open=True,
        chapter_index=event.chapter_index,
        chapter_count=event.chapter_count,
        page_count=event.page_count,
        page_index=clamp_page_index(page, event.page_count),
        landing=Landing.FIRST,
    )
    return _render(reading)


def _load_failed(state: ReaderState, event: LoadFailed) -> Transition:
    effects: tuple[Effect, ...] = (CloseBook(),) if state.book_open else ()
    failed = replace(state, mode=Mode.ERROR, book_open=False, error=event.message)
    return failed, effects + (ShowError(event.message),)


def _dismiss_error(state: ReaderState, event: DismissError) -> Transition:
    return ReaderState(), (RenderHome(),)


def _next_page(state: ReaderState, event: NextPage) -> Transition:
    if state.page_index + 1 < state.page_count:
        return _render(replace(state, page_index=state.page_index + 1))
    if state.chapter_index + 1 < state.chapter_count:
        target = state.chapter_index + 1
        loading = replace(state, mode=Mode.LOADING, landing=Landing.FIRST)
        return loading, (StartLoadChapter(target),)
    return state, ()


def _prev_page(state: ReaderState, event: PrevPage) -> Transition:
    if state.page_index > 0:
        return _render(replace(state, page_index=state.page_index - 1))
    if state.chapter_index > 0:
        target = state.chapter_index - 1
        loading = replace(state, mode=Mode.LOADING, landing=Landing.LAST)
        return loading, (StartLoadChapter(target),)
    return state, ()


def _go_home(state: ReaderState, event: GoHome) -> Transition:
    return ReaderState(), (CloseBook(), RenderHome())


def _repaginated(state: ReaderState, event: Repaginated) -> Transition:
    wanted = state.page_index if event.page_index is None else event.page_index
    updated = replace(
        state,
        page_count=event.page_count,
        page_index=clamp_page_index(wanted, event.page_count),
    )
    return _render(updated)


TRANSITIONS: dict[tuple[Mode, type], Callable[[ReaderState, object], Transition]] = {
    (Mode.HOME, SelectBook): _select_book,
    (Mode.ERROR, SelectBook): _select_book,
    (Mode.LOADING, LoadSucceeded): _load_succeeded,
    (Mode.LOADING, LoadFailed): _load_failed,
    (Mode.ERROR, DismissError): _dismiss_error,
    (Mode.READING, NextPage): _next_page,
    (Mode.READING, PrevPage): _prev_page,
    (Mode.READING, GoHome): _go_home,
    (Mode.READING, Repaginated): _repaginated,
}


def transition(state: ReaderState, event: Event) -> Transition:
    handler = TRANSITIONS.get((state.mode, type(event)))
    if handler is None:
        return state, ()
    return handler(state, event)


__all__ = [
    "CloseBook",
    "DismissError",
    "Effect",
    "Event",
    "GoHome",
    "Landing",
    "LoadFailed",
    "LoadSucceeded",
    "Mode",
    "NextPage",
    "PrevPage",
    "ReaderState",
    "RenderHome",
    "RenderPage",
    "Repaginated",
    "SelectBook",
    "ShowError",
    "StartLoadChapter",
    "StartOpen",
    "TRANSITIONS",
    "transition",
]
