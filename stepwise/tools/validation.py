import jsonschema

from stepwise.tools.base import Tool, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: dict) -> tuple[bool, str | None]:
        """Check model-supplied *arguments* against the tool's JSON schema.

        Returns ``(True, None)`` or ``(False, message)``; the message names
        the offending argument path when there is one so the model can fix
        its next call.
        """
        if not isinstance(arguments, dict):
            return False, f"arguments must be an object, got {type(arguments).__name__}"

        schema = normalize_schema(tool.parameters)
        validator = jsonschema.validators.validator_for(schema)(schema)
        error = jsonschema.exceptions.best_match(validator.iter_errors(arguments))
        if error is None:
            return True, None

        path = ".".join(str(p) for p in error.absolute_path)
        if path:
            return False, f"{error.message} (at '{path}')"
        return False, str(error.message)
