from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Union

import pytest

from storycraft.state import InMemoryValidationStore, ValidationTracker


class ScriptedGateway:
    """Returns queued responses in order; queued exceptions are raised instead."""

    def __init__(self, *responses: Union[str, Exception]):
        self.responses: List[Union[str, Exception]] = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def call(self, prompt: str, *, temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> str:
        with self._lock:
            self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
            if not self.responses:
                raise AssertionError("ScriptedGateway ran out of responses")
            item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def tracker() -> ValidationTracker:
    return ValidationTracker(InMemoryValidationStore())
