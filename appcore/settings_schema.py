"""Known settings keys, used to flag typos in settings.json."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

# Marks a section whose contents are free-form.
OPEN = "*"

KNOWN_SETTINGS: Mapping[str, Any] = {
    "version": None,
    "working_dir": None,
    "database": frozenset({"data_directory", "backup_directory"}),
    "backup": frozenset(
        {
            "enable",
            "compress",
            "compression_level",
            "max_backups",
            "max_age_days",
            "max_directory_size_mb",
            "name_format",
            "retention_policy",
            "safety_backup_before_restore",
            "validate_after_create",
            "min_free_disk_mb",
        }
    ),
    "logging": frozenset({"level", "json_file"}),
    "api": OPEN,
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> List[str]:
        """Return dotted paths of keys the schema does not know, sorted."""

        found: List[str] = []
        self._collect(payload, self.schema, (), found)
        return sorted(found)

    def _collect(
        self,
        payload: Mapping[str, Any],
        schema: Mapping[str, Any],
        prefix: Tuple[str, ...],
        found: List[str],
    ) -> None:
        for key, value in payload.items():
            path = prefix + (str(key),)
            if key not in schema:
                found.append(".".join(path))
                continue
            rule = schema[key]
            if not isinstance(value, Mapping) or rule is None or rule == OPEN:
                continue
            if isinstance(rule, frozenset):
                found.extend(".".join(path + (str(sub),)) for sub in value if sub not in rule)
            elif isinstance(rule, Mapping):
                self._collect(value, rule, path, found)


SETTINGS_VALIDATOR = SettingsValidator(KNOWN_SETTINGS)

__all__ = ["KNOWN_SETTINGS", "SETTINGS_VALIDATOR", "SettingsValidator"]
