"""Schema registry backed by package data only.

Schemas ship inside the installed ``archrig.schemas`` package, so lookups
never depend on the current working directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from importlib.resources import files
from typing import Any

SCHEMA_PACKAGE = "archrig.schemas"
SCHEMA_SUFFIX = ".schema.json"


@dataclass(frozen=True)
class SchemaRegistry:
    """Registry of available schemas.

    Attributes:
        available: Sorted tuple of canonical schema names (without suffix)
    """

    available: tuple[str, ...] = ()

    def __init__(self) -> None:
        names = [
            item.name[: -len(SCHEMA_SUFFIX)]
            for item in files(SCHEMA_PACKAGE).iterdir()
            if item.name.endswith(SCHEMA_SUFFIX)
        ]
        object.__setattr__(self, "available", tuple(sorted(names)))

    def _normalize_name(self, name: str) -> str:
        if name.endswith(SCHEMA_SUFFIX):
            return name[: -len(SCHEMA_SUFFIX)]
        return name

    def get_json(self, name: str) -> dict[str, Any]:
        """Load a schema as a parsed dictionary.

        Raises:
            KeyError: If the schema is not shipped with this installation
            ValueError: If the schema file is not valid JSON
        """
        canonical = self._normalize_name(name)
        if canonical not in self.available:
            raise KeyError(
                f"Schema '{canonical}' not found in archrig package data. "
                f"Available schemas: {', '.join(self.available) or '(none)'}"
            )
        text = (files(SCHEMA_PACKAGE) / f"{canonical}{SCHEMA_SUFFIX}").read_text(encoding="utf-8")
        try:
            res: dict[str, Any] = json.loads(text)
            return res
        except json.JSONDecodeError as e:
            raise ValueError(f"Schema '{canonical}' contains invalid JSON: {e}") from e


_registry: SchemaRegistry | None = None


def get_registry() -> SchemaRegistry:
    """Get the process-wide schema registry."""
    global _registry
    if _registry is None:
        _registry = SchemaRegistry()
    return _registry
