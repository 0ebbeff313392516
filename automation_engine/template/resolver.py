"""
Sandboxed template resolution engine.

Resolves {{ field.path }} syntax against an event context without eval/exec.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional


class TemplateValidationError(ValueError):
    """Raised when template validation fails."""

    def __init__(self, message: str, template: str, position: Optional[int] = None):
        self.template = template
        self.position = position
        super().__init__(message)


@dataclass
class TemplateReference:
    """Represents a parsed template reference."""

    full_match: str
    root: str
    path: list  # Remaining path (e.g., ["address", "country"])
    start_pos: int
    end_pos: int


class TemplateResolver:
    """
    Resolves template expressions safely.

    Supports:
    - {{ amount }} - top-level context field
    - {{ user.kycLevel }} - nested field
    - {{ items[0].sku }} or {{ items.0.sku }} - list indexing
    - {{ env.API_TOKEN }} - whitelisted environment values

    Security:
    - No eval/exec
    - Restricted to the event context and the env whitelist
    - Path traversal only through dict keys and list indices
    """

    # Pattern to match {{ reference }}
    TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

    # Pattern to validate reference format
    REFERENCE_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_\-]*)(?:\.([a-zA-Z0-9_.\[\]\-]*))?$")

    ENV_ROOT = "env"

    def __init__(
        self,
        context: dict[str, Any],
        env_vars: Optional[dict[str, str]] = None,
    ):
        """
        Initialize resolver.

        Args:
            context: Event context (working copy)
            env_vars: Safe environment values (whitelist only)
        """
        self.context = context
        self.env_vars = env_vars or {}

    def resolve(self, template: str | dict | list) -> Any:
        """
        Resolve all template expressions in a value.

        Handles strings, dicts, and lists recursively.
        """
        if isinstance(template, str):
            return self._resolve_string(template)
        elif isinstance(template, dict):
            return {k: self.resolve(v) for k, v in template.items()}
        elif isinstance(template, list):
            return [self.resolve(v) for v in template]
        else:
            return template

    def resolve_text(self, template: str) -> str:
        """Resolve a template that must produce a string (URLs, header values)."""
        value = self._resolve_string(template)
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return str(value)

    def _resolve_string(self, template: str) -> Any:
        """Resolve template expressions in a string."""
        references = self.find_references(template)

        if not references:
            return template

        # A string that is exactly one reference keeps the referenced type
        if len(references) == 1 and references[0].full_match == template.strip():
            return self._resolve_reference(references[0])

        result = template
        for ref in reversed(references):  # Reverse to maintain positions
            value = self._resolve_reference(ref)
            str_value = str(value) if value is not None else ""
            result = result[:ref.start_pos] + str_value + result[ref.end_pos:]

        return result

    def find_references(self, template: str) -> list[TemplateReference]:
        """Find all template references in a string."""
        references = []

        for match in self.TEMPLATE_PATTERN.finditer(template):
            parsed = parse_reference(match.group(1).strip())
            if parsed:
                references.append(TemplateReference(
                    full_match=match.group(0),
                    root=parsed[0],
                    path=parsed[1],
                    start_pos=match.start(),
                    end_pos=match.end(),
                ))

        return references

    def _resolve_reference(self, ref: TemplateReference) -> Any:
        """Resolve a single reference to its value."""
        if ref.root == self.ENV_ROOT:
            return self._navigate_path(self.env_vars, ref.path)
        if not isinstance(self.context, dict) or ref.root not in self.context:
            return None
        return self._navigate_path(self.context[ref.root], ref.path)

    def _navigate_path(self, value: Any, path: list) -> Any:
        """
        Navigate a path through nested data structures.

        Security: Only dict-based navigation and list indexing are allowed.
        No attribute access (getattr).
        """
        current = value

        for key in path:
            if current is None:
                return None

            if isinstance(current, list):
                index = key if isinstance(key, int) else (int(key) if str(key).isdigit() else None)
                if index is not None and 0 <= index < len(current):
                    current = current[index]
                else:
                    return None
            elif isinstance(current, dict):
                current = current.get(key if not isinstance(key, int) else str(key))
            else:
                return None

        return current


def parse_reference(reference: str) -> Optional[tuple[str, list]]:
    """
    Parse a reference string into (root, path).

    Examples:
        "amount" -> ("amount", [])
        "user.kycLevel" -> ("user", ["kycLevel"])
        "items[0].sku" -> ("items", [0, "sku"])
    """
    # Normalize a leading index on the root: items[0].sku -> items.[0].sku
    normalized = re.sub(r"^([a-zA-Z_][a-zA-Z0-9_\-]*)\[", r"\1.[", reference)
    match = TemplateResolver.REFERENCE_PATTERN.match(normalized)
    if not match:
        return None

    root = match.group(1)
    path_str = match.group(2) or ""

    path: list = []
    for part in filter(None, path_str.split(".")):
        array_match = re.fullmatch(r"([a-zA-Z0-9_\-]*)((?:\[\d+\])+)", part)
        if array_match:
            if array_match.group(1):
                path.append(array_match.group(1))
            path.extend(int(i) for i in re.findall(r"\[(\d+)\]", array_match.group(2)))
        else:
            path.append(part)

    return (root, path)


def validate_template(template: str) -> None:
    """
    Check that every {{ ... }} in a template is a well-formed reference.

    Raises:
        TemplateValidationError: On the first malformed reference
    """
    for match in TemplateResolver.TEMPLATE_PATTERN.finditer(template):
        if parse_reference(match.group(1).strip()) is None:
            raise TemplateValidationError(
                f"Invalid template reference: {match.group(0)}",
                template=template,
                position=match.start(),
            )
    if template.count("{{") != template.count("}}"):
        raise TemplateValidationError("Unbalanced template braces", template=template)


def render_config(
    config: dict[str, Any],
    context: dict[str, Any],
    env_vars: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """
    Resolve all templates in an action configuration.

    Convenience function for action handlers.
    """
    return TemplateResolver(context=context, env_vars=env_vars).resolve(config)
