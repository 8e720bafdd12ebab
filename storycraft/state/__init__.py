from storycraft.state.models import new_wizard_state
from storycraft.state.validation import (
    FileValidationStore,
    InMemoryValidationStore,
    MappingValidationStore,
    ValidationTracker,
)

__all__ = [
    "new_wizard_state",
    "ValidationTracker",
    "InMemoryValidationStore",
    "MappingValidationStore",
    "FileValidationStore",
]
