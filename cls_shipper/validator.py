"""Validates log entries posted by the debug console against a JSON schema."""

import json
import os
import threading
from collections import defaultdict

import jsonschema

DEFAULT_SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schemas", "log_entry.json")


class LogValidator:
    """Validates log entries against a JSON schema and keeps simple stats."""

    def __init__(self, schema_path=DEFAULT_SCHEMA_PATH):
        with open(schema_path, "r") as f:
            schema = json.load(f)

        self._validator = jsonschema.Draft202012Validator(schema)
        self._lock = threading.Lock()
        self._stats = {
            "total": 0,
            "valid": 0,
            "invalid": 0,
            "error_types": defaultdict(int),
        }

    def validate(self, log_entry):
        """Validate a log entry against the schema.

        Returns:
            tuple: (is_valid: bool, errors: list[str])
        """
        errors = sorted(self._validator.iter_errors(log_entry), key=lambda e: [str(p) for p in e.path])

        with self._lock:
            self._stats["total"] += 1
            if not errors:
                self._stats["valid"] += 1
                return True, []

            self._stats["invalid"] += 1
            for error in errors:
                self._stats["error_types"][error.validator] += 1

        messages = []
        for error in errors:
            location = ".".join(str(part) for part in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)

        return False, messages

    def get_stats(self):
        """Return a copy of the stats dict."""
        with self._lock:
            stats = dict(self._stats)
            stats["error_types"] = dict(stats["error_types"])
        return stats
