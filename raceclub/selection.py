"""Class selection state for one driver's nomination to one event."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from .errors import LimitExceededError, PreferenceError
from .models import DEFAULT_CLASS_LIMIT, Event, NominationEntry


class ClassSelection:
    """Ordered class picks plus at most one free preference class.

    The preference, when set, is always one of the selected classes. ``limit``
    bounds the number of selected classes; ``None`` means unlimited.
    """

    def __init__(
        self,
        limit: Optional[int] = DEFAULT_CLASS_LIMIT,
        preference_enabled: bool = True,
    ):
        self.limit = limit
        self.preference_enabled = preference_enabled
        self._selected: List[Any] = []
        self._preference: Optional[Any] = None

    @classmethod
    def for_event(cls, event: Event) -> "ClassSelection":
        return cls(limit=event.class_limit, preference_enabled=event.preference_enabled)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[NominationEntry],
        limit: Optional[int] = DEFAULT_CLASS_LIMIT,
        preference_enabled: bool = True,
    ) -> "ClassSelection":
        """Rebuild the state a driver saved earlier.

        Entries are read in ``order_index`` order. Stored rows beyond the
        current limit are dropped, as is a preference the event no longer
        allows.
        """
        sel = cls(limit=limit, preference_enabled=preference_enabled)
        pref = None
        for entry in sorted(entries, key=lambda e: e.order_index):
            if entry.class_id in sel._selected:
                continue
            if sel.is_full():
                break
            sel._selected.append(entry.class_id)
            if entry.is_preference and pref is None:
                pref = entry.class_id
        if pref is not None and preference_enabled:
            sel._preference = pref
        return sel

    @classmethod
    def build(cls, event: Event, selected: Iterable[Any], preference: Optional[Any] = None) -> "ClassSelection":
        """Replay a submitted selection through ``toggle``/``set_preference``.

        Raises the same errors an interactive user would hit, so an
        over-limit or inconsistent submission is rejected before any write.
        """
        sel = cls.for_event(event)
        for class_id in selected:
            if class_id in sel._selected:
                continue
            sel.toggle(class_id)
        if preference is not None:
            sel.set_preference(preference)
        return sel

    @property
    def selected(self) -> Tuple[Any, ...]:
        return tuple(self._selected)

    @property
    def preference(self) -> Optional[Any]:
        return self._preference

    @property
    def primary(self) -> Tuple[Any, ...]:
        return tuple(c for c in self._selected if c != self._preference)

    def is_full(self) -> bool:
        return self.limit is not None and len(self._selected) >= self.limit

    def toggle(self, class_id: Any) -> bool:
        """Select or deselect ``class_id``; return True when it is now selected."""
        if class_id in self._selected:
            self._selected.remove(class_id)
            if self._preference == class_id:
                self._preference = None
            return False
        if self.is_full():
            raise LimitExceededError(self.limit)
        self._selected.append(class_id)
        return True

    def set_preference(self, class_id: Any) -> None:
        if not self.preference_enabled:
            raise PreferenceError("This event does not offer a preference class.")
        if class_id not in self._selected:
            raise PreferenceError("The preference class must be one of your selected classes.")
        self._preference = class_id

    def clear_preference(self) -> None:
        self._preference = None

    def to_dict(self) -> dict:
        return {
            "selected": list(self._selected),
            "preference": self._preference,
            "limit": self.limit,
            "preference_enabled": self.preference_enabled,
        }

    def __repr__(self) -> str:
        return f"ClassSelection(selected={self._selected!r}, preference={self._preference!r}, limit={self.limit!r})"
