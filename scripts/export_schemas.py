from __future__ import annotations

import json
from pathlib import Path

from storycraft.schemas.models import (
    CustomerProfile,
    ExportRecord,
    GeneratedContent,
    StoryContent,
    UseCaseAnalysis,
)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "storycraft" / "schemas" / "json"


def write_schema(name: str, schema: dict) -> None:
    SCHEMA_DIR.mkdir(parents=True, exist_ok=True)
    path = SCHEMA_DIR / f"{name}.schema.json"
    path.write_text(json.dumps(schema, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"Wrote {path}")


def main() -> None:
    # Wire (camelCase) names, as exchanged with the model and the document script.
    write_schema("customer_profile", CustomerProfile.model_json_schema(by_alias=True))
    write_schema("use_case_analysis", UseCaseAnalysis.model_json_schema(by_alias=True))
    write_schema("generated_content", GeneratedContent.model_json_schema(by_alias=True))
    write_schema("story_content", StoryContent.model_json_schema(by_alias=True))
    write_schema("export_record", ExportRecord.model_json_schema(by_alias=True))


if __name__ == "__main__":
    main()
