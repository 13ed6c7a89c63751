"""Navigation state machine of the reveal viewer.

A viewer is either on the intro screen or on one item of the ranking. Items
are presented in the order they were loaded (highest rank first).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class NavigationState:
    current_index: int = 0
    show_intro: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {"currentIndex": self.current_index, "showIntro": self.show_intro}


INTRO = NavigationState(current_index=0, show_intro=True)


def clamp_index(index: int, item_count: int) -> int:
    """Clamp into ``[0, max(0, item_count - 1)]``."""
    return min(max(index, 0), max(0, item_count - 1))


def next_state(state: NavigationState, item_count: int) -> NavigationState:
    """Intro goes to the first item, the last item stays put."""
    if item_count == 0:
        return state
    if state.show_intro:
        return NavigationState(current_index=0, show_intro=False)
    if state.current_index < item_count - 1:
        return NavigationState(current_index=clamp_index(state.current_index + 1, item_count), show_intro=False)
    return state


def prev_state(state: NavigationState, item_count: int) -> NavigationState:
    """The first item goes back to the intro, the intro stays put."""
    if state.show_intro:
        return state
    if state.current_index <= 0:
        return NavigationState(current_index=0, show_intro=True)
    return NavigationState(current_index=clamp_index(state.current_index - 1, item_count), show_intro=False)
