"""
Schema validation of raw log events

Every raw log handed over by an input is checked against the log schema
before it becomes a pipeline event. Schemas are dicts of field constraints:

    {"field": "str"}                                  required string
    {"field": {"type": "int", "required": False}}     optional int
    {"field": {"type": "dict", "schema": {...}}}      nested schema
"""

import time
from typing import Any, Dict, List, Optional

from .util import parse_iso8601


class ValidationError(Exception):
    """Exception raised when schema validation fails"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


LOG_SCHEMA: Dict[str, Any] = {
    "request": {
        "type": "dict",
        "schema": {
            "time": "iso8601",
            "address": {"type": "str", "min_length": 1},
            "method": {"type": "str", "required": False},
            "url": {"type": "str", "required": False},
            "host": {"type": "str", "required": False},
            "protocol": {"type": "str", "required": False},
            "headers": {"type": "dict", "required": False},
            "captured_headers": {"type": "list", "required": False},
        },
    },
    "response": {
        "type": "dict",
        "required": False,
        "schema": {
            "status": {"type": "int", "required": False, "min_value": 100, "max_value": 599},
            "headers": {"type": "dict", "required": False},
        },
    },
}


class SchemaValidator:
    """
    Runtime schema validation for raw log data

    Keeps simple statistics about the validations performed.
    """

    def __init__(self):
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._validation_stats = {
            "validations_performed": 0,
            "validation_failures": 0,
            "validation_time": 0.0,
        }

    def register_schema(self, name: str, schema: Dict[str, Any]) -> None:
        """
        Register a validation schema

        Args:
            name: Schema name/identifier
            schema: Schema definition dictionary
        """
        self._schemas[name] = self._compile_schema(schema)

    def _compile_schema(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize constraints so that every field has a type and required flag"""
        compiled = {}

        for field, constraints in schema.items():
            if isinstance(constraints, str):
                compiled[field] = {"type": constraints, "required": True}
            elif isinstance(constraints, dict):
                compiled[field] = constraints.copy()
                compiled[field].setdefault("required", True)
                if "schema" in compiled[field]:
                    compiled[field]["schema"] = self._compile_schema(compiled[field]["schema"])
            else:
                compiled[field] = {"type": "any", "required": True}

        return compiled

    def errors(self, data: Any, schema_name: str) -> List[str]:
        """All violations of `data` against a registered schema"""
        if schema_name not in self._schemas:
            raise ValidationError(f"Schema '{schema_name}' not found")
        if not isinstance(data, dict):
            return [f"Expected an object, got {type(data).__name__}"]
        return self._check(data, self._schemas[schema_name], prefix="")

    def validate(self, data: Any, schema_name: str, strict: bool = False) -> bool:
        """
        Validate data against a registered schema

        Args:
            data: Data to validate
            schema_name: Name of registered schema
            strict: If True, raise ValidationError on failure

        Returns:
            True if valid, False otherwise (unless strict=True)

        Raises:
            ValidationError: If validation fails and strict=True
        """
        start_time = time.perf_counter()
        self._validation_stats["validations_performed"] += 1

        try:
            errors = self.errors(data, schema_name)
            if errors:
                self._validation_stats["validation_failures"] += 1
                if strict:
                    raise ValidationError(
                        f"Validation failed: {'; '.join(errors[:5])}"
                        + (f" ... and {len(errors) - 5} more" if len(errors) > 5 else ""),
                        errors,
                    )
                return False
            return True
        finally:
            self._validation_stats["validation_time"] += time.perf_counter() - start_time

    def _check(self, data: Dict[str, Any], schema: Dict[str, Any], prefix: str) -> List[str]:
        errors = []
        for field, constraints in schema.items():
            path = f"{prefix}{field}"
            if field not in data or data[field] is None:
                if constraints.get("required", True):
                    errors.append(f"Required field '{path}' is missing")
                continue
            errors.extend(self._validate_field(path, data[field], constraints))
        return errors

    def _validate_field(self, field: str, value: Any, constraints: Dict[str, Any]) -> List[str]:
        """Validate a single field against constraints"""
        errors = []

        expected_type = constraints.get("type")
        if expected_type and expected_type != "any":
            if not self._check_type(value, expected_type):
                errors.append(
                    f"Field '{field}' expected type {expected_type}, got {type(value).__name__}"
                )
                return errors  # Skip other validations if type is wrong

        if isinstance(value, str):
            min_length = constraints.get("min_length")
            if min_length and len(value) < min_length:
                errors.append(f"Field '{field}' below min length of {min_length} characters")

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            min_value = constraints.get("min_value")
            if min_value is not None and value < min_value:
                errors.append(f"Field '{field}' below minimum value of {min_value}")

            max_value = constraints.get("max_value")
            if max_value is not None and value > max_value:
                errors.append(f"Field '{field}' exceeds maximum value of {max_value}")

        if isinstance(value, dict) and "schema" in constraints:
            errors.extend(self._check(value, constraints["schema"], prefix=f"{field}."))

        return errors

    def _check_type(self, value: Any, expected_type: str) -> bool:
        """Check if value matches expected type"""
        if expected_type == "iso8601":
            try:
                parse_iso8601(value)
            except ValueError:
                return False
            return True

        type_map = {
            "str": str,
            "int": int,
            "float": (int, float),
            "bool": bool,
            "list": list,
            "dict": dict,
            "number": (int, float),
        }

        expected = type_map.get(expected_type.lower())
        if expected is None:
            return True  # Can't validate unknown types
        if isinstance(value, bool) and expected_type in ("int", "float", "number"):
            return False
        return isinstance(value, expected)

    def get_stats(self) -> Dict[str, Any]:
        """Get validation statistics"""
        total = self._validation_stats["validations_performed"]
        failures = self._validation_stats["validation_failures"]

        return {
            **self._validation_stats,
            "success_rate": ((total - failures) / total * 100) if total > 0 else 100.0,
            "registered_schemas": len(self._schemas),
        }


def create_log_validator() -> SchemaValidator:
    """Validator with the log schema registered as ``log``"""
    validator = SchemaValidator()
    validator.register_schema("log", LOG_SCHEMA)
    return validator
