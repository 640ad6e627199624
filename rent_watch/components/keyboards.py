"""
Inline keyboards used by the conversation engine.

Keyboards are built as transport-neutral ``Keyboard`` values; the
messaging channel renders them for the platform.
"""

from typing import Iterable, List, Optional

from ..models.conversation import (
    EventKind,
    Keyboard,
    KeyboardButton,
    build_callback_data,
)
from ..models.search import MAX_ROOMS, MIN_ROOMS

SELECTED_MARK = "✅ "


def _button(text: str, kind: EventKind, payload: Optional[str] = None) -> KeyboardButton:
    return KeyboardButton(text=text, callback_data=build_callback_data(kind, payload))


def main_menu() -> Keyboard:
    return Keyboard(
        rows=[
            [_button("🔍 Create search", EventKind.START_CREATE)],
            [
                _button("📋 My search", EventKind.SHOW_SEARCH),
                _button("❓ Help", EventKind.HELP),
            ],
        ]
    )


def room_selection() -> Keyboard:
    buttons = []
    for rooms in range(MIN_ROOMS, MAX_ROOMS + 1):
        if rooms == MAX_ROOMS:
            label = f"{rooms}+ rooms"
        else:
            label = "1 room" if rooms == 1 else f"{rooms} rooms"
        buttons.append(_button(label, EventKind.SELECT_ROOMS, str(rooms)))

    return Keyboard(
        rows=[
            buttons[:3],
            buttons[3:],
            [_button("❌ Cancel", EventKind.CANCEL)],
        ]
    )


def district_selection(catalog: List[str], selected: Iterable[str]) -> Keyboard:
    """Two districts per row, selected ones marked, then 'All' and 'Done'."""
    selected = set(selected)
    rows = []
    for i in range(0, len(catalog), 2):
        row = []
        for district in catalog[i : i + 2]:
            mark = SELECTED_MARK if district in selected else ""
            row.append(_button(mark + district, EventKind.TOGGLE_DISTRICT, district))
        rows.append(row)

    rows.append(
        [
            _button("🌍 All districts", EventKind.SELECT_ALL_DISTRICTS),
            _button("✅ Done", EventKind.DONE),
        ]
    )
    rows.append([_button("❌ Cancel", EventKind.CANCEL)])
    return Keyboard(rows=rows)


def search_management(is_active: bool) -> Keyboard:
    toggle = (
        _button("⏸ Pause", EventKind.PAUSE)
        if is_active
        else _button("▶️ Resume", EventKind.RESUME)
    )
    return Keyboard(
        rows=[
            [toggle],
            [
                _button("✏️ Edit", EventKind.EDIT_MENU),
                _button("🗑 Delete", EventKind.DELETE),
            ],
            [_button("◀️ Back", EventKind.BACK)],
        ]
    )


def edit_options() -> Keyboard:
    return Keyboard(
        rows=[
            [_button("💰 Price", EventKind.EDIT_PRICE)],
            [_button("🛏 Rooms", EventKind.EDIT_ROOMS)],
            [_button("📍 Districts", EventKind.EDIT_DISTRICTS)],
            [_button("❌ Cancel", EventKind.CANCEL)],
        ]
    )


def delete_confirmation() -> Keyboard:
    return Keyboard(
        rows=[
            [
                _button("✅ Yes, delete", EventKind.CONFIRM_DELETE),
                _button("❌ Cancel", EventKind.CANCEL_DELETE),
            ]
        ]
    )


def cancel_only() -> Keyboard:
    return Keyboard(rows=[[_button("❌ Cancel", EventKind.CANCEL)]])
