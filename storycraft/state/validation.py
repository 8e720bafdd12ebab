"""Per-use-case validation flags; the only gate for enabling export."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Protocol

from storycraft.pipeline.steps import AUTO_ACCEPT_THRESHOLD
from storycraft.schemas.models import SECTIONS, GeneratedContent, Section
from storycraft.state.models import SectionFlags, ValidationRecord

logger = logging.getLogger(__name__)

STORAGE_KEY = "storycraft_validation_states"


class ValidationStore(Protocol):
    def load(self) -> Dict[str, ValidationRecord]:
        ...

    def save(self, data: Dict[str, ValidationRecord]) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryValidationStore:
    """Keeps a JSON snapshot, so stored records never alias the caller's objects."""

    def __init__(self) -> None:
        self._raw: Optional[str] = None

    def load(self) -> Dict[str, ValidationRecord]:
        if not self._raw:
            return {}
        return json.loads(self._raw)

    def save(self, data: Dict[str, ValidationRecord]) -> None:
        self._raw = json.dumps(data)

    def clear(self) -> None:
        self._raw = None


class MappingValidationStore:
    """Stores the JSON snapshot under one key of a session mapping (e.g. `st.session_state`)."""

    def __init__(self, mapping: MutableMapping[str, Any], key: str = STORAGE_KEY):
        self._mapping = mapping
        self._key = key

    def load(self) -> Dict[str, ValidationRecord]:
        raw = self._mapping.get(self._key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error("Error reading validation data: %s", e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, ValidationRecord]) -> None:
        self._mapping[self._key] = json.dumps(data)

    def clear(self) -> None:
        if self._key in self._mapping:
            del self._mapping[self._key]


_SAFE_ID_RE = re.compile(r"[^a-zA-Z0-9_.-]")


class FileValidationStore:
    """One JSON file per browser session, so flags survive a page reload."""

    def __init__(self, directory: str | Path, session_id: str):
        safe = _SAFE_ID_RE.sub("_", (session_id or "").strip()) or "unknown"
        self.path = Path(directory) / f"{safe}.validation.json"

    def load(self) -> Dict[str, ValidationRecord]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Error reading validation data from %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, ValidationRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write: write to a temp file then replace.
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _fully_validated(flags: SectionFlags) -> bool:
    return bool(flags["problem"] and flags["solution"] and flags["impact"])


class ValidationTracker:
    def __init__(self, store: Optional[ValidationStore] = None):
        self.store: ValidationStore = store or InMemoryValidationStore()

    def initialize(self, key: str, name: str, category: str) -> None:
        """Start tracking a use case; existing state for the key is left alone."""
        data = self.store.load()
        if key in data:
            return
        data[key] = {
            "use_case_key": key,
            "use_case_name": name,
            "use_case_category": category,
            "validation_state": {"problem": False, "solution": False, "impact": False},
            "is_fully_validated": False,
        }
        self.store.save(data)
        logger.info("Initialized use case: %s", key)

    def update_section(self, key: str, section: Section, is_validated: bool) -> bool:
        """Set one flag. Returns True when the fully-validated status flipped."""
        if section not in SECTIONS:
            raise ValueError(f"Unknown section: {section}")
        data = self.store.load()
        record = data.get(key)
        if record is None:
            logger.warning("Use case not found: %s", key)
            return False

        was_validated = bool(record["is_fully_validated"])
        record["validation_state"][section] = bool(is_validated)
        record["is_fully_validated"] = _fully_validated(record["validation_state"])
        self.store.save(data)

        changed = record["is_fully_validated"] != was_validated
        logger.debug("Updated %s.%s = %s (changed=%s)", key, section, is_validated, changed)
        return changed

    def apply_confidences(self, key: str, content: GeneratedContent, threshold: float = AUTO_ACCEPT_THRESHOLD) -> bool:
        """Auto-accept every section whose confidence meets the threshold."""
        changed = False
        for section in SECTIONS:
            if self.update_section(key, section, content.confidence_for(section) >= threshold):
                changed = True
        return changed

    def get(self, key: str) -> Optional[ValidationRecord]:
        return self.store.load().get(key)

    def section_validated(self, key: str, section: Section) -> bool:
        record = self.get(key)
        return bool(record and record["validation_state"].get(section))

    def is_validated(self, key: str) -> bool:
        record = self.get(key)
        return bool(record and record["is_fully_validated"])

    def all_validated(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return False
        data = self.store.load()
        return all(bool(data.get(k) and data[k]["is_fully_validated"]) for k in keys)

    def validated_use_cases(self) -> List[ValidationRecord]:
        return [r for r in self.store.load().values() if r["is_fully_validated"]]

    def summary(self) -> Dict[str, Any]:
        data = self.store.load()
        total = len(data)
        validated = sum(1 for r in data.values() if r["is_fully_validated"])
        return {
            "total_use_cases": total,
            "validated_use_cases": validated,
            "all_validated": total > 0 and validated == total,
        }

    def clear(self) -> None:
        self.store.clear()
        logger.info("Cleared all validation data")
