"""Template interpolation for action configs."""

from automation_engine.template.resolver import (
    TemplateResolver,
    TemplateValidationError,
    render_config,
    validate_template,
)

__all__ = ["TemplateResolver", "TemplateValidationError", "render_config", "validate_template"]
