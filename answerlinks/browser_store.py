"""
In-memory stand-in for the per-browser storage the answer portal relies on.

Each browser (identified by the portal's ``browser_id`` cookie) gets a durable
local area and an ephemeral session area, mirroring localStorage and
sessionStorage. Completion markers and answer drafts live here.
Data is lost on server restart.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import json
import threading


def answered_key(subject_path: str, link_id: str) -> str:
    return f"{subject_path}_answered:{link_id}"


def draft_key(subject_path: str, link_id: str) -> str:
    return f"{subject_path}_draft:{link_id}"


def deadline_key(subject_path: str, link_id: str) -> str:
    return f"{subject_path}_deadline:{link_id}"


def submitted_flag_key(subject_path: str) -> str:
    return f"{subject_path}Submitted"


@dataclass
class BrowserArea:
    """Storage areas of one browser."""

    local: dict[str, str] = field(default_factory=dict)
    session: dict[str, str] = field(default_factory=dict)
    touched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BrowserStorage:
    """Thread-safe key/value storage, partitioned per browser."""

    def __init__(self):
        self._browsers: dict[str, BrowserArea] = {}
        self._lock = threading.Lock()

    def _area(self, browser_id: str) -> BrowserArea:
        area = self._browsers.get(browser_id)
        if area is None:
            area = self._browsers[browser_id] = BrowserArea()
        area.touched_at = datetime.now(timezone.utc)
        return area

    def get_item(self, browser_id: str, key: str, *, session: bool = False) -> Optional[str]:
        with self._lock:
            area = self._area(browser_id)
            return (area.session if session else area.local).get(key)

    def set_item(self, browser_id: str, key: str, value: str, *, session: bool = False) -> None:
        with self._lock:
            area = self._area(browser_id)
            (area.session if session else area.local)[key] = value

    def remove_item(self, browser_id: str, key: str, *, session: bool = False) -> None:
        with self._lock:
            area = self._area(browser_id)
            (area.session if session else area.local).pop(key, None)

    def cleanup_idle(self, max_age_days: int = 30) -> None:
        """Forget browsers that have not been seen for max_age_days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        with self._lock:
            idle = [key for key, area in self._browsers.items() if area.touched_at < cutoff]
            for key in idle:
                del self._browsers[key]


class CompletionMarkerStore:
    """Completion markers for one browser, keyed by ``{subject}_answered:{linkId}``."""

    def __init__(self, storage: BrowserStorage, browser_id: str):
        self.storage = storage
        self.browser_id = browser_id

    def has_marker(self, subject_path: str, link_id: str) -> bool:
        return self.storage.get_item(self.browser_id, answered_key(subject_path, link_id)) is not None

    def submitted_at(self, subject_path: str, link_id: str) -> Optional[datetime]:
        value = self.storage.get_item(self.browser_id, answered_key(subject_path, link_id))
        return datetime.fromisoformat(value) if value else None

    def mark_submitted(self, subject_path: str, link_id: str, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        self.storage.set_item(self.browser_id, answered_key(subject_path, link_id), when.isoformat())
        self.storage.set_item(self.browser_id, submitted_flag_key(subject_path), "1", session=True)

    def load_draft(self, subject_path: str, link_id: str) -> dict[str, Any]:
        raw = self.storage.get_item(self.browser_id, draft_key(subject_path, link_id))
        if not raw:
            return {}
        return json.loads(raw)

    def save_draft(self, subject_path: str, link_id: str, draft: dict[str, Any]) -> None:
        self.storage.set_item(self.browser_id, draft_key(subject_path, link_id), json.dumps(draft))

    def clear_draft(self, subject_path: str, link_id: str) -> None:
        self.storage.remove_item(self.browser_id, draft_key(subject_path, link_id))

    def deadline(self, subject_path: str, link_id: str) -> Optional[datetime]:
        """When a timed subject opened in this browser stops accepting answers."""
        value = self.storage.get_item(self.browser_id, deadline_key(subject_path, link_id))
        return datetime.fromisoformat(value) if value else None

    def set_deadline(self, subject_path: str, link_id: str, when: datetime) -> None:
        self.storage.set_item(self.browser_id, deadline_key(subject_path, link_id), when.isoformat())


# Global instance
browser_storage = BrowserStorage()
