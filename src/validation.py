"""
Schema Validation - JSON Schema validation of declaration documents.

Checks the shape of the extractor's output before the declaration model is
built, so structural problems are reported with a field path.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

_NAME_LIST = {
    "oneOf": [
        {"type": "array", "items": {"type": "string"}},
        {"type": "string"},
        {"type": "null"},
    ]
}

_ENUM_VALUE = {"type": ["string", "integer"]}

_STEP_KEY = {
    "type": "object",
    "required": ["typeName", "message", "primaryEntity", "stage"],
    "properties": {
        "typeName": {"type": "string", "minLength": 1},
        "message": {"type": "string", "minLength": 1},
        "primaryEntity": {"type": "string", "minLength": 1},
        "stage": _ENUM_VALUE,
    },
}

DECLARATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["pluginTypes", "steps", "images"],
    "properties": {
        "pluginTypes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["typeName", "assemblyId"],
                "properties": {
                    "typeName": {"type": "string", "minLength": 1},
                    "assemblyId": {"type": "string", "minLength": 1},
                },
            },
        },
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["typeName", "message", "primaryEntity", "stage"],
                "properties": {
                    "typeName": {"type": "string", "minLength": 1},
                    "message": {"type": "string", "minLength": 1},
                    "primaryEntity": {"type": "string", "minLength": 1},
                    "stage": _ENUM_VALUE,
                    "mode": _ENUM_VALUE,
                    "rank": {"type": "integer"},
                    "filteringAttributes": _NAME_LIST,
                    "configuration": {"type": ["string", "null"]},
                    "name": {"type": ["string", "null"]},
                },
            },
        },
        "images": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["stepKey", "imageType", "name"],
                "properties": {
                    "stepKey": _STEP_KEY,
                    "imageType": _ENUM_VALUE,
                    "name": {"type": "string", "minLength": 1},
                    "attributes": _NAME_LIST,
                    "messagePropertyName": {"type": ["string", "null"]},
                },
            },
        },
    },
}


def validate_against_schema(
    document: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a document against a JSON Schema.

    Args:
        document: The document to validate
        schema: The Draft 7 JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(document), key=lambda e: list(e.path))

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"


def validate_declaration_document(
    document: Dict[str, Any],
) -> Tuple[bool, Optional[str]]:
    """
    Validate a declaration document against DECLARATION_SCHEMA.

    Only shape is checked here; references between collections and
    duplicate identity keys are checked when the model is built.
    """
    return validate_against_schema(document, DECLARATION_SCHEMA)
