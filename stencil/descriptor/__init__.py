"""
stencil/descriptor - Template descriptor model, parser and validator.

This package turns template.yml documents into typed descriptors:
- Types: TemplateDescriptor, VariableDefinition, Step, Include, Dependency
- Parser: TemplateParser (accumulates errors and warnings, never raises)
- Conditions: restricted interpreter for `when` / include conditions
- Planning: dependency-ordered step phases

Usage:
    from stencil.descriptor import TemplateParser, evaluate_condition

    parsed = TemplateParser().parse_file("templates/api")
    descriptor = parsed.raise_for_errors()
    evaluate_condition("framework == 'react'", {"framework": "react"})
"""

from .types import (
    ActionStepConfig,
    CodeModStepConfig,
    ConflictPolicy,
    ConflictStrategy,
    Dependency,
    DependencyType,
    Hooks,
    Include,
    ParsedTemplate,
    RecipeStepConfig,
    Settings,
    ShellStepConfig,
    Step,
    TemplateDescriptor,
    TemplateExample,
    TemplateStepConfig,
    ToolType,
    VariableDefinition,
    VariableType,
    descriptor_to_dict,
)

from .errors import (
    CircularStepDependencyError,
    ConditionSyntaxError,
    TemplateConfigError,
)

from .conditions import (
    evaluate_condition,
    is_degenerate_condition,
    parse_condition,
)

from .parser import (
    TemplateParser,
    compare_versions,
    dependency_from_value,
)

from stencil.resolution.references import locate_descriptor

from .planning import (
    StepPhase,
    plan_step_phases,
)

__all__ = [
    "ActionStepConfig",
    "CircularStepDependencyError",
    "CodeModStepConfig",
    "ConditionSyntaxError",
    "ConflictPolicy",
    "ConflictStrategy",
    "Dependency",
    "DependencyType",
    "Hooks",
    "Include",
    "ParsedTemplate",
    "RecipeStepConfig",
    "Settings",
    "ShellStepConfig",
    "Step",
    "StepPhase",
    "TemplateConfigError",
    "TemplateDescriptor",
    "TemplateExample",
    "TemplateParser",
    "TemplateStepConfig",
    "ToolType",
    "VariableDefinition",
    "VariableType",
    "compare_versions",
    "dependency_from_value",
    "descriptor_to_dict",
    "evaluate_condition",
    "is_degenerate_condition",
    "locate_descriptor",
    "parse_condition",
    "plan_step_phases",
]
