"""
types.py - Dataclasses for template descriptors.

A descriptor is the in-memory form of one template.yml: identity, variables,
steps, dependencies and the composition directives (extends/includes). The
parser is the only producer of these objects; composition builds new ones
rather than mutating parsed descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class VariableType(str, Enum):
    """Allowed variable types."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"
    FILE = "file"
    DIRECTORY = "directory"


class ToolType(str, Enum):
    """Tool kinds a step can be tagged with."""
    TEMPLATE = "template"
    ACTION = "action"
    CODEMOD = "codemod"
    RECIPE = "recipe"
    SHELL = "shell"


class DependencyType(str, Enum):
    """Source kinds for a declared dependency."""
    REGISTRY = "registry-package"
    REPOSITORY = "repository"
    LOCAL = "local"
    HTTP = "http"


class ConflictStrategy(str, Enum):
    """How colliding entries are merged during composition."""
    MERGE = "merge"
    REPLACE = "replace"
    EXTEND = "extend"
    FAIL = "fail"
    ERROR = "error"
    PROMPT = "prompt"

    @property
    def aborts(self) -> bool:
        return self in (ConflictStrategy.FAIL, ConflictStrategy.ERROR)


# Legacy spellings accepted in dependency objects
DEPENDENCY_TYPE_ALIASES = {
    "npm": DependencyType.REGISTRY,
    "registry": DependencyType.REGISTRY,
    "registry-package": DependencyType.REGISTRY,
    "github": DependencyType.REPOSITORY,
    "repository": DependencyType.REPOSITORY,
    "local": DependencyType.LOCAL,
    "http": DependencyType.HTTP,
}


# =============================================================================
# Variables
# =============================================================================


@dataclass
class VariableDefinition:
    """Definition of one template variable."""
    type: VariableType
    required: bool = False
    default: Any = None
    description: Optional[str] = None
    pattern: Optional[str] = None
    values: Optional[List[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    multiple: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.required:
            data["required"] = True
        if self.default is not None:
            data["default"] = self.default
        if self.description:
            data["description"] = self.description
        if self.pattern is not None:
            data["pattern"] = self.pattern
        if self.values is not None:
            data["values"] = list(self.values)
        if self.min is not None:
            data["min"] = self.min
        if self.max is not None:
            data["max"] = self.max
        if self.multiple:
            data["multiple"] = True
        return data


@dataclass
class TemplateExample:
    """A documented example invocation of a template."""
    title: str
    variables: Dict[str, Any]
    description: Optional[str] = None


# =============================================================================
# Steps
# =============================================================================


@dataclass
class TemplateStepConfig:
    template: str
    engine: Optional[str] = None  # "liquid" | "auto"
    output_dir: Optional[str] = None
    overwrite: Optional[bool] = None
    exclude: List[str] = field(default_factory=list)


@dataclass
class ActionStepConfig:
    action: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    dry_run: Optional[bool] = None
    force: Optional[bool] = None


@dataclass
class CodeModStepConfig:
    codemod: str
    files: List[str]
    backup: Optional[bool] = None
    parser: Optional[str] = None  # "typescript" | "javascript" | "json" | "auto"
    parameters: Dict[str, Any] = field(default_factory=dict)
    force: Optional[bool] = None


@dataclass
class RecipeStepConfig:
    recipe: str
    version: Optional[str] = None
    inherit_variables: Optional[bool] = None
    variable_overrides: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ShellStepConfig:
    command: str
    cwd: Optional[str] = None
    shell_env: Dict[str, str] = field(default_factory=dict)


StepConfig = Union[
    TemplateStepConfig,
    ActionStepConfig,
    CodeModStepConfig,
    RecipeStepConfig,
    ShellStepConfig,
]


@dataclass
class Step:
    """One unit of generation work inside a descriptor."""
    name: str
    tool: ToolType
    config: StepConfig
    description: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    when: Optional[str] = None
    parallel: Optional[bool] = None
    continue_on_error: Optional[bool] = None
    timeout: Optional[float] = None
    retries: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Composition directives and dependencies
# =============================================================================


@dataclass
class Include:
    """A sub-template pulled into a descriptor during composition."""
    url: str
    version: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    condition: Optional[str] = None
    strategy: ConflictStrategy = ConflictStrategy.MERGE


@dataclass
class Dependency:
    """An external dependency declared by a descriptor."""
    name: str
    type: DependencyType = DependencyType.REGISTRY
    version: Optional[str] = None
    url: Optional[str] = None
    optional: bool = False
    dev: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.type.value)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "type": self.type.value}
        if self.version:
            data["version"] = self.version
        if self.url:
            data["url"] = self.url
        if self.optional:
            data["optional"] = True
        if self.dev:
            data["dev"] = True
        return data


@dataclass
class ConflictPolicy:
    """Descriptor-level conflict settings (strategy plus per-category rules)."""
    strategy: ConflictStrategy = ConflictStrategy.MERGE
    rules: Dict[str, ConflictStrategy] = field(default_factory=dict)

    def for_category(self, category: str) -> ConflictStrategy:
        return self.rules.get(category, self.strategy)


@dataclass
class Hooks:
    """Lifecycle hook command lists."""
    pre: List[str] = field(default_factory=list)
    post: List[str] = field(default_factory=list)
    error: List[str] = field(default_factory=list)


@dataclass
class Settings:
    """Execution settings consumed by the execution engine."""
    timeout: Optional[float] = None
    retries: Optional[int] = None
    continue_on_error: Optional[bool] = None
    max_parallel_steps: Optional[int] = None
    working_dir: Optional[str] = None

    def merged_over(self, parent: "Settings") -> "Settings":
        """Field-wise merge, preferring non-None values from self."""
        return Settings(
            timeout=self.timeout if self.timeout is not None else parent.timeout,
            retries=self.retries if self.retries is not None else parent.retries,
            continue_on_error=(
                self.continue_on_error
                if self.continue_on_error is not None
                else parent.continue_on_error
            ),
            max_parallel_steps=(
                self.max_parallel_steps
                if self.max_parallel_steps is not None
                else parent.max_parallel_steps
            ),
            working_dir=self.working_dir if self.working_dir is not None else parent.working_dir,
        )


# =============================================================================
# Descriptor
# =============================================================================


@dataclass
class TemplateDescriptor:
    """Complete template descriptor.

    `variables` keeps declaration order; keys are unique by construction.
    A descriptor has at most one parent (`extends`).
    """
    name: str
    variables: Dict[str, VariableDefinition] = field(default_factory=dict)
    description: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    examples: List[TemplateExample] = field(default_factory=list)
    dependencies: List[Dependency] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)
    extends: Optional[str] = None
    includes: List[Include] = field(default_factory=list)
    conflicts: ConflictPolicy = field(default_factory=ConflictPolicy)
    engines: Dict[str, str] = field(default_factory=dict)
    hooks: Hooks = field(default_factory=Hooks)
    settings: Settings = field(default_factory=Settings)

    @property
    def has_steps(self) -> bool:
        return len(self.steps) > 0

    def variable_defaults(self) -> Dict[str, Any]:
        """Map of variable name to default value (None when unset)."""
        return {name: var.default for name, var in self.variables.items()}


@dataclass
class ParsedTemplate:
    """Result of parsing one descriptor: never raised, always returned."""
    descriptor: TemplateDescriptor
    file_path: Optional[str]
    is_valid: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def raise_for_errors(self) -> TemplateDescriptor:
        """Return the descriptor, or raise TemplateConfigError if invalid."""
        from .errors import TemplateConfigError

        if not self.is_valid:
            raise TemplateConfigError(self.file_path or "<inline>", self.errors)
        return self.descriptor


# =============================================================================
# Serialization
# =============================================================================


def step_to_dict(step: Step) -> Dict[str, Any]:
    """Serialize a Step back to its descriptor (camelCase) form."""
    data: Dict[str, Any] = {"name": step.name, "tool": step.tool.value}
    if step.description:
        data["description"] = step.description
    if step.depends_on:
        data["dependsOn"] = list(step.depends_on)
    if step.when:
        data["when"] = step.when
    if step.parallel is not None:
        data["parallel"] = step.parallel
    if step.continue_on_error is not None:
        data["continueOnError"] = step.continue_on_error
    if step.timeout is not None:
        data["timeout"] = step.timeout
    if step.retries is not None:
        data["retries"] = step.retries
    if step.tags:
        data["tags"] = list(step.tags)
    if step.variables:
        data["variables"] = dict(step.variables)
    if step.environment:
        data["environment"] = dict(step.environment)

    cfg = step.config
    if isinstance(cfg, TemplateStepConfig):
        data["template"] = cfg.template
        if cfg.engine:
            data["engine"] = cfg.engine
        if cfg.output_dir:
            data["outputDir"] = cfg.output_dir
        if cfg.overwrite is not None:
            data["overwrite"] = cfg.overwrite
        if cfg.exclude:
            data["exclude"] = list(cfg.exclude)
    elif isinstance(cfg, ActionStepConfig):
        data["action"] = cfg.action
        if cfg.parameters:
            data["parameters"] = dict(cfg.parameters)
        if cfg.dry_run is not None:
            data["dryRun"] = cfg.dry_run
        if cfg.force is not None:
            data["force"] = cfg.force
    elif isinstance(cfg, CodeModStepConfig):
        data["codemod"] = cfg.codemod
        data["files"] = list(cfg.files)
        if cfg.backup is not None:
            data["backup"] = cfg.backup
        if cfg.parser:
            data["parser"] = cfg.parser
        if cfg.parameters:
            data["parameters"] = dict(cfg.parameters)
        if cfg.force is not None:
            data["force"] = cfg.force
    elif isinstance(cfg, RecipeStepConfig):
        data["recipe"] = cfg.recipe
        if cfg.version:
            data["version"] = cfg.version
        if cfg.inherit_variables is not None:
            data["inheritVariables"] = cfg.inherit_variables
        if cfg.variable_overrides:
            data["variableOverrides"] = dict(cfg.variable_overrides)
    elif isinstance(cfg, ShellStepConfig):
        data["command"] = cfg.command
        if cfg.cwd:
            data["cwd"] = cfg.cwd
        if cfg.shell_env:
            data["env"] = dict(cfg.shell_env)
    return data


def descriptor_to_dict(descriptor: TemplateDescriptor) -> Dict[str, Any]:
    """Serialize a descriptor to the template.yml mapping layout."""
    data: Dict[str, Any] = {
        "name": descriptor.name,
        "variables": {k: v.to_dict() for k, v in descriptor.variables.items()},
    }
    for key in ("description", "version", "author", "category", "extends"):
        value = getattr(descriptor, key)
        if value:
            data[key] = value
    if descriptor.tags:
        data["tags"] = list(descriptor.tags)
    if descriptor.examples:
        data["examples"] = [
            {
                k: v
                for k, v in (
                    ("title", ex.title),
                    ("description", ex.description),
                    ("variables", dict(ex.variables)),
                )
                if v is not None
            }
            for ex in descriptor.examples
        ]
    if descriptor.dependencies:
        data["dependencies"] = [d.to_dict() for d in descriptor.dependencies]
    if descriptor.outputs:
        data["outputs"] = list(descriptor.outputs)
    if descriptor.steps:
        data["steps"] = [step_to_dict(s) for s in descriptor.steps]
    if descriptor.includes:
        data["includes"] = [
            {
                k: v
                for k, v in (
                    ("url", inc.url),
                    ("version", inc.version),
                    ("variables", dict(inc.variables) or None),
                    ("condition", inc.condition),
                    ("strategy", inc.strategy.value),
                )
                if v is not None
            }
            for inc in descriptor.includes
        ]
    if descriptor.conflicts.rules or descriptor.conflicts.strategy != ConflictStrategy.MERGE:
        data["conflicts"] = {"strategy": descriptor.conflicts.strategy.value}
        if descriptor.conflicts.rules:
            data["conflicts"]["rules"] = {
                k: v.value for k, v in descriptor.conflicts.rules.items()
            }
    if descriptor.engines:
        data["engines"] = dict(descriptor.engines)
    hooks = {k: list(v) for k, v in vars(descriptor.hooks).items() if v}
    if hooks:
        data["hooks"] = hooks
    settings = {
        key: value
        for key, value in (
            ("timeout", descriptor.settings.timeout),
            ("retries", descriptor.settings.retries),
            ("continueOnError", descriptor.settings.continue_on_error),
            ("maxParallelSteps", descriptor.settings.max_parallel_steps),
            ("workingDir", descriptor.settings.working_dir),
        )
        if value is not None
    }
    if settings:
        data["settings"] = settings
    return data
