"""
JSON Schema definitions for checkpoint metadata validation.

Defines the structure of ``checkpoints/<run_key>/metadata.json``.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

STAGE_RECORD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["stage", "status", "saved_at", "duration_seconds"],
    "additionalProperties": False,
    "properties": {
        "stage": {
            "type": "string",
            "description": "Stage name",
        },
        "status": {
            "type": "string",
            "enum": ["completed", "restored", "skipped"],
            "description": "Terminal stage status",
        },
        "saved_at": {
            "type": "string",
            "format": "date-time",
            "description": "ISO8601 timestamp of the last save",
        },
        "duration_seconds": {
            "type": "number",
            "minimum": 0,
            "description": "Time spent computing the stage",
        },
        "restored_at": {
            "type": ["string", "null"],
            "format": "date-time",
            "description": "ISO8601 timestamp when the stage was restored from disk",
        },
    },
}

METADATA_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "GitLab Insights checkpoint metadata",
    "description": "Run index used to resume an interrupted analysis",
    "type": "object",
    "required": ["run_id", "signature", "generated_at", "stages"],
    "additionalProperties": False,
    "properties": {
        "run_id": {
            "type": "string",
            "minLength": 1,
            "description": "Run key the checkpoints belong to",
        },
        "signature": {
            "type": "object",
            "description": "Flat map of the inputs that identify the run",
            "additionalProperties": {"type": ["string", "integer", "number", "boolean"]},
        },
        "generated_at": {
            "type": "string",
            "format": "date-time",
            "description": "ISO8601 timestamp of the last metadata write",
        },
        "stages": {
            "type": "object",
            "description": "Stage name to checkpoint record",
            "additionalProperties": STAGE_RECORD_SCHEMA,
        },
    },
}


def validate_metadata(data: Any) -> tuple[bool, list[str]]:
    """
    Validate checkpoint metadata against the schema.

    Args:
        data: Parsed metadata.json content

    Returns:
        Tuple of (is_valid, list_of_error_messages)
    """
    validator = Draft7Validator(METADATA_SCHEMA)
    errors = list(validator.iter_errors(data))

    if not errors:
        return True, []

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        error_messages.append(f"{path}: {error.message}")

    return False, error_messages
