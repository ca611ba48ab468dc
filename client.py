"""
Client-side holder for an editable calendar configuration.

The holder owns the current ``CalendarConfiguration`` snapshot, talks to the
state API over an ``httpx.Client`` and remembers, per identifier, the edit
password it was issued. That password lives in plain local storage: it only
decides whether this installation *tries* to save, it is not authentication.
"""
from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

import httpx
from pydantic import ValidationError

from schemas import CalendarConfiguration

logger = logging.getLogger(__name__)

PASSWORD_KEY = "calendar_state_password_"

EDITABLE_FIELDS = ("selected_year", "hide_weekend_colors", "holiday_summary", "day_states")


class PasswordStorage:
    """Local key-value storage for edit passwords, one entry per identifier.

    Entries are kept under ``calendar_state_password_<id>``. With a ``path``
    the whole mapping is persisted as a JSON file; without one it lives in
    memory only.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path else None
        self._items: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"ignoring unreadable password storage {self._path}: {e}")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def _write(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def get(self, state_id: str) -> Optional[str]:
        return self._items.get(PASSWORD_KEY + state_id)

    def set(self, state_id: str, password: str) -> None:
        self._items[PASSWORD_KEY + state_id] = password
        self._write()

    def remove(self, state_id: str) -> None:
        if self._items.pop(PASSWORD_KEY + state_id, None) is not None:
            self._write()


@dataclass(frozen=True)
class StateChange:
    state: CalendarConfiguration
    changed: bool


class CalendarStateHolder:
    """Editable calendar configuration mirrored to the state API.

    Edits never save implicitly. Either call ``save()`` after a batch of
    ``update()`` calls, or wrap them in ``with holder.edit():`` which saves
    once on exit if the snapshot changed and an identifier already exists.

    Overlapping saves are not serialized: the last response to arrive wins
    the identifier/password bookkeeping.
    """

    def __init__(
        self,
        http: httpx.Client,
        passwords: Optional[PasswordStorage] = None,
        origin: Optional[str] = None,
        clipboard: Optional[Callable[[str], Any]] = None,
        on_share: Optional[Callable[[str], Any]] = None,
        state: Optional[CalendarConfiguration] = None,
    ):
        self.http = http
        self.passwords = passwords if passwords is not None else PasswordStorage()
        self.origin = (origin or str(http.base_url)).rstrip("/")
        self._clipboard = clipboard
        self._on_share = on_share
        self._state = state or CalendarConfiguration()
        self.state_id: Optional[str] = None
        self.has_edit_access = False

    @property
    def state(self) -> CalendarConfiguration:
        return self._state

    def open(self, state_id: Optional[str] = None) -> Optional[str]:
        """Load ``state_id`` if given, otherwise create a new saved configuration."""
        if state_id:
            self.state_id = state_id
            self.load(state_id)
        else:
            self.save()
        return self.state_id

    def load(self, state_id: str) -> bool:
        try:
            resp = self.http.get("/api/state", params={"id": state_id})
            resp.raise_for_status()
            body = resp.json()
            raw = body.get("state") if isinstance(body, dict) else None
            if not isinstance(raw, dict):
                logger.error(f"Failed to load state: unexpected response body {body!r:.100}")
                return False
            loaded = CalendarConfiguration.model_validate(raw)
            has_password = self.passwords.get(state_id) is not None
        except (httpx.HTTPError, ValidationError, ValueError, TypeError, OSError) as e:
            logger.error(f"Failed to load state: {e}")
            return False

        if loaded.day_states is None:
            loaded = loaded.model_copy(update={"day_states": self._state.day_states})
        self._state = loaded
        self.has_edit_access = has_password
        return True

    def update(self, **changes: Any) -> StateChange:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise TypeError(f"not an editable field: {', '.join(sorted(unknown))}")
        data = self._state.model_dump()
        data.update(changes)
        new_state = CalendarConfiguration.model_validate(data)
        changed = new_state != self._state
        self._state = new_state
        return StateChange(state=new_state, changed=changed)

    @contextmanager
    def edit(self) -> Iterator["CalendarStateHolder"]:
        before = self._state
        yield self
        if self.state_id and self._state != before:
            self.save()

    def save(self) -> Optional[str]:
        if self.state_id and not self.has_edit_access:
            return None

        try:
            password = self.passwords.get(self.state_id) if self.state_id else None
            if not password:
                password = str(uuid.uuid4())

            state = self._state.model_copy(update={"password": password})
            resp = self.http.post(
                "/api/state",
                json={
                    "state": state.model_dump(by_alias=True),
                    "id": self.state_id,
                    "password": password,
                },
            )
            resp.raise_for_status()
            body = resp.json()
            new_id = body.get("id") if isinstance(body, dict) else None
            if not isinstance(new_id, str) or not new_id:
                logger.error(f"Failed to save state: unexpected response body {body!r:.100}")
                return None
            self.state_id = new_id
            self.passwords.set(new_id, password)
            self.has_edit_access = True
        except (httpx.HTTPError, ValueError, TypeError, OSError) as e:
            logger.error(f"Failed to save state: {e}")
            return None
        return new_id

    def share(self) -> Optional[str]:
        """Viewer URL for the current identifier, copied to the clipboard writer."""
        if not self.state_id:
            return None
        url = f"{self.origin}/?id={self.state_id}"
        if self._clipboard is not None:
            self._clipboard(url)
        if self._on_share is not None:
            self._on_share(url)
        return url
