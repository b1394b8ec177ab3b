"""JSON Schema validation infrastructure.

Provides schema validation for account configurations and config files:
- Schemas ship as package data under ``stakecourt/schemas``
- Cross-schema ``$ref`` resolution through a shared registry
- Cached validators
- Error messages prefixed with the JSON path of the offending value
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
SCHEMA_BASE_URI = "https://schemas.stakecourt.dev/"


def load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Build a registry of every bundled schema, keyed by ``$id``."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"{SCHEMA_BASE_URI}{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str) -> Draft202012Validator:
    """Create a validator for a bundled schema file.

    Args:
        schema_name: File name under the schemas directory

    Returns:
        A configured Draft202012Validator
    """
    schema_path = SCHEMAS_DIR / schema_name
    if not schema_path.is_file():
        raise FileNotFoundError(f"Unknown schema: {schema_name}")
    schema = load_json(schema_path)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


__all__ = ["SCHEMAS_DIR", "schema_validator", "validate_against_schema"]
