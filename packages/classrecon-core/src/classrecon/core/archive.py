"""File-based archive of recovered class models."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from classrecon.core.store import ClassModelStore
from classrecon.core.types.layout import Layout
from classrecon.core.types.model import ClassType
from classrecon.core.types.results import AnalysisState, AttributedFunction

logger = logging.getLogger(__name__)

INDEX_KEY = "index"


class FileStorage:
    """Simple file-based key-value storage; one JSON document per key."""

    def __init__(self, directory: str = ".classrecon/archive"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _key_path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any | None:
        """Retrieve a stored document by key."""
        path = self._key_path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to read archive entry: %s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2, sort_keys=True))
        except OSError:
            logger.warning("Failed to write archive entry: %s", key)

    def delete(self, key: str) -> bool:
        path = self._key_path(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def clear(self) -> None:
        for path in self.directory.glob("*.json"):
            path.unlink()

    def keys(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))


def class_entry_key(key: int) -> str:
    return f"class-{key:x}"


class ClassModelArchive:
    """Persists class types, layouts, attributed functions and states.

    Each class is one document keyed by its class key; an ``index``
    document lists the keys in store order so a reload preserves it.
    """

    def __init__(self, storage: FileStorage):
        self.storage = storage

    def save(self, store: ClassModelStore) -> int:
        keys: List[int] = []
        for cls in store.classes():
            layout = store.layout_of(cls)
            document: Dict[str, Any] = {
                "class": cls.model_dump(mode="json"),
                "layout": layout.model_dump(mode="json") if layout is not None else None,
                "attributed": [
                    r.model_dump(mode="json") for r in store.attributed_functions(cls)
                ],
                "state": store.state_of(cls).value,
            }
            self.storage.set(class_entry_key(cls.key), document)
            keys.append(cls.key)
        self.storage.set(INDEX_KEY, {"classes": keys})
        logger.debug("Saved %d class models to %s", len(keys), self.storage.directory)
        return len(keys)

    def load(self, store: ClassModelStore) -> int:
        """Add every archived class to *store*; malformed entries are skipped."""
        index = self.storage.get(INDEX_KEY)
        if not index:
            return 0
        loaded = 0
        for key in index.get("classes", []):
            document = self.storage.get(class_entry_key(key))
            if document is None:
                logger.warning("Archive index names missing class 0x%x", key)
                continue
            try:
                cls = ClassType.model_validate(document["class"])
                raw_layout = document.get("layout")
                layout = Layout.model_validate(raw_layout) if raw_layout is not None else None
                attributed = [
                    AttributedFunction.model_validate(r) for r in document.get("attributed", [])
                ]
                state = AnalysisState(document.get("state", AnalysisState.NOT_ANALYZED.value))
                if state is AnalysisState.ANALYZING:
                    state = AnalysisState.NOT_ANALYZED
            except (KeyError, ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed archive entry 0x%x: %s", key, exc)
                continue
            store.add(cls)
            if layout is not None:
                store.register_layout(cls, layout)
            for record in attributed:
                store.set_attributed_function(record.class_key, record.function, record.is_destructor)
            store.set_state(cls, state)
            loaded += 1
        return loaded
