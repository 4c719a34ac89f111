"""
parser.py - Parse and validate template.yml descriptors.

The parser never raises for bad descriptor content. Every problem is collected
into a ParsedTemplate: fatal problems go to `errors` (the descriptor is then
invalid), recoverable ones go to `warnings` and the offending field is dropped.

Usage:
    parser = TemplateParser()
    parsed = parser.parse_file("templates/react-component")
    if not parsed.is_valid:
        print(parsed.errors)
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from stencil.resolution.references import classify_reference, locate_descriptor

from .conditions import is_degenerate_condition
from .types import (
    DEPENDENCY_TYPE_ALIASES,
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
    StepConfig,
    TemplateDescriptor,
    TemplateExample,
    TemplateStepConfig,
    ToolType,
    VariableDefinition,
    VariableType,
)

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("1.0.0",)

VALID_VARIABLE_TYPES = tuple(t.value for t in VariableType)
VALID_TOOL_TYPES = tuple(t.value for t in ToolType)
VALID_TEMPLATE_ENGINES = ("liquid", "auto")
VALID_CODEMOD_PARSERS = ("typescript", "javascript", "json", "auto")
CONFLICT_CATEGORIES = ("variables", "dependencies", "outputs", "tags")

# Shorthand keys in inference order: the first key present picks the tool
_TOOL_SHORTHANDS = (
    ("command", ToolType.SHELL),
    ("recipe", ToolType.RECIPE),
    ("template", ToolType.TEMPLATE),
    ("action", ToolType.ACTION),
    ("codemod", ToolType.CODEMOD),
)

_SCHEMA_PATH = Path(__file__).parent / "schemas" / "template.schema.json"

PathLike = Union[str, Path]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value: Any) -> Tuple[List[str], bool]:
    """Return the string members of a list and whether anything was dropped."""
    if not isinstance(value, list):
        return [], True
    items = [v for v in value if isinstance(v, str)]
    return items, len(items) != len(value)


def compare_versions(version1: str, version2: str) -> int:
    """Compare dotted numeric versions.

    Missing or non-numeric parts count as 0.

    Returns:
        1 if version1 > version2, -1 if lower, 0 if equal.
    """

    def parts(version: str) -> List[int]:
        result = []
        for piece in str(version).split("."):
            match = re.match(r"\d+", piece)
            result.append(int(match.group(0)) if match else 0)
        return result

    v1, v2 = parts(version1), parts(version2)
    for i in range(max(len(v1), len(v2))):
        a = v1[i] if i < len(v1) else 0
        b = v2[i] if i < len(v2) else 0
        if a > b:
            return 1
        if a < b:
            return -1
    return 0


def infer_dependency_type(url: str) -> DependencyType:
    """Infer a dependency type from its explicit url."""
    return DependencyType(classify_reference(url).value)


def dependency_from_value(
    value: Any, index: int, warnings: List[str]
) -> Optional[Dependency]:
    """Normalize one dependency entry (bare name or mapping).

    A bare string is a registry package. A mapping without a usable `type`
    infers it from `url`, falling back to a registry package.
    """
    if isinstance(value, str):
        if not value.strip():
            warnings.append(f"Dependency {index + 1} must have a name")
            return None
        return Dependency(name=value.strip(), type=DependencyType.REGISTRY)

    if not isinstance(value, Mapping):
        warnings.append(f"Dependency {index + 1} must be a string or object")
        return None

    name = value.get("name")
    if not name or not isinstance(name, str):
        warnings.append(f"Dependency {index + 1} must have a name")
        return None

    dependency = Dependency(name=name)

    version = value.get("version")
    if isinstance(version, str) and version:
        dependency.version = version

    url = value.get("url")
    if isinstance(url, str) and url:
        dependency.url = url

    raw_type = value.get("type")
    if raw_type is not None and raw_type in DEPENDENCY_TYPE_ALIASES:
        dependency.type = DEPENDENCY_TYPE_ALIASES[raw_type]
    else:
        if raw_type is not None:
            warnings.append(f"Dependency '{name}' has unknown type: {raw_type}")
        dependency.type = (
            infer_dependency_type(dependency.url) if dependency.url else DependencyType.REGISTRY
        )

    for flag in ("optional", "dev"):
        flag_value = value.get(flag)
        if flag_value is None:
            continue
        if isinstance(flag_value, bool):
            setattr(dependency, flag, flag_value)
        else:
            warnings.append(f"Dependency '{name}' {flag} should be a boolean")

    return dependency


class TemplateParser:
    """Parser and validator for template descriptors.

    Args:
        schema_check: Also run the bundled JSON Schema over the raw document.
            Schema findings are reported as warnings only.
        default_conflict_strategy: Conflict strategy for descriptors that do
            not declare one.
    """

    def __init__(
        self,
        schema_check: bool = False,
        default_conflict_strategy: ConflictStrategy = ConflictStrategy.MERGE,
    ):
        self.schema_check = schema_check
        self.default_conflict_strategy = ConflictStrategy(default_conflict_strategy)
        self._schema: Optional[Dict[str, Any]] = None

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def parse_file(self, path: PathLike) -> ParsedTemplate:
        """Parse a descriptor file, or the descriptor inside a directory."""
        file_path = locate_descriptor(Path(path))
        if file_path is None:
            return self._failure(str(path), f"Template file not found: {path}")

        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            return self._failure(str(file_path), f"Failed to read template file: {e}")

        return self.parse_text(content, source=str(file_path))

    def parse_text(self, text: str, source: Optional[str] = None) -> ParsedTemplate:
        """Parse descriptor text."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            return self._failure(source, f"Failed to parse template file: {e}")

        if not data or not isinstance(data, dict):
            return self._failure(source, "Invalid YAML format or empty file")

        return self.parse_data(data, source=source)

    def parse_data(self, data: Mapping[str, Any], source: Optional[str] = None) -> ParsedTemplate:
        """Validate an already-loaded descriptor mapping."""
        errors: List[str] = []
        warnings: List[str] = []

        if self.schema_check:
            warnings.extend(self._schema_warnings(data))

        descriptor = self._build_descriptor(data, errors, warnings)
        parsed = ParsedTemplate(
            descriptor=descriptor,
            file_path=source,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
        )
        if errors:
            logger.warning(
                "Template descriptor %s is invalid (%d errors)", source or "<inline>", len(errors)
            )
        else:
            logger.debug(
                "Parsed template '%s' from %s (%d warnings)",
                descriptor.name, source or "<inline>", len(warnings),
            )
        return parsed

    def parse_directory(self, directory: PathLike) -> List[ParsedTemplate]:
        """Parse every `<subdir>/template.yml` directly under a directory.

        A missing or unreadable directory yields an empty list.
        """
        root = Path(directory)
        if not root.is_dir():
            logger.warning("Could not read template directory: %s", root)
            return []

        results = []
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            descriptor_path = locate_descriptor(entry)
            if descriptor_path is not None:
                results.append(self.parse_file(descriptor_path))
        return results

    # -------------------------------------------------------------------------
    # Descriptor
    # -------------------------------------------------------------------------

    def _failure(self, source: Optional[str], message: str) -> ParsedTemplate:
        logger.warning("Template descriptor %s rejected: %s", source or "<inline>", message)
        return ParsedTemplate(
            descriptor=TemplateDescriptor(name=""),
            file_path=source,
            is_valid=False,
            errors=[message],
        )

    def _build_descriptor(
        self, data: Mapping[str, Any], errors: List[str], warnings: List[str]
    ) -> TemplateDescriptor:
        descriptor = TemplateDescriptor(name="")
        descriptor.conflicts.strategy = self.default_conflict_strategy

        name = data.get("name")
        if not name or not isinstance(name, str):
            errors.append("Template name is required and must be a string")
        else:
            descriptor.name = name

        variables = data.get("variables")
        if variables is None or not isinstance(variables, dict):
            errors.append("Template variables section is required and must be an object")
        else:
            descriptor.variables = self._parse_variables(variables, errors, warnings)

        for key in ("description", "author", "category"):
            value = data.get(key)
            if value is None:
                continue
            if isinstance(value, str):
                setattr(descriptor, key, value)
            else:
                warnings.append(f"Template {key} should be a string")

        version = data.get("version")
        if version is not None:
            if not isinstance(version, str):
                warnings.append("Template version should be a string")
            else:
                descriptor.version = version
                if version not in SUPPORTED_VERSIONS:
                    warnings.append(f"Unsupported template version: {version}")

        if "tags" in data:
            tags, dropped = _string_list(data["tags"])
            if not isinstance(data["tags"], list):
                warnings.append("Tags should be an array of strings")
            elif dropped:
                warnings.append("Some tags were ignored (must be strings)")
            descriptor.tags = tags

        if "examples" in data:
            if isinstance(data["examples"], list):
                descriptor.examples = self._parse_examples(
                    data["examples"], descriptor.variables, warnings
                )
            else:
                warnings.append("Examples should be an array")

        if "dependencies" in data:
            if isinstance(data["dependencies"], list):
                descriptor.dependencies = [
                    dep
                    for index, value in enumerate(data["dependencies"])
                    for dep in [dependency_from_value(value, index, warnings)]
                    if dep is not None
                ]
            else:
                warnings.append("Dependencies should be an array")

        if "outputs" in data:
            outputs, dropped = _string_list(data["outputs"])
            if not isinstance(data["outputs"], list):
                warnings.append("Outputs should be an array of strings")
            elif dropped:
                warnings.append("Some outputs were ignored (must be strings)")
            descriptor.outputs = outputs

        if "engines" in data:
            descriptor.engines = self._parse_engines(data["engines"], warnings)

        if "hooks" in data:
            descriptor.hooks = self._parse_hooks(data["hooks"], warnings)

        if "steps" in data:
            if isinstance(data["steps"], list):
                descriptor.steps = self._parse_steps(data["steps"], errors, warnings)
            else:
                warnings.append("Steps should be an array")

        if "settings" in data:
            descriptor.settings = self._parse_settings(data["settings"], warnings)

        extends = data.get("extends")
        if extends is not None:
            if isinstance(extends, list):
                errors.append("Template can extend only one parent (extends must be a string)")
            elif isinstance(extends, str) and extends.strip():
                descriptor.extends = extends.strip()
            else:
                warnings.append("Template extends should be a string")

        if "includes" in data:
            if isinstance(data["includes"], list):
                descriptor.includes = self._parse_includes(data["includes"], warnings)
            else:
                warnings.append("Includes should be an array")

        if "conflicts" in data:
            descriptor.conflicts = self._parse_conflicts(data["conflicts"], warnings)

        return descriptor

    # -------------------------------------------------------------------------
    # Variables and examples
    # -------------------------------------------------------------------------

    def _parse_variables(
        self, variables: Mapping[str, Any], errors: List[str], warnings: List[str]
    ) -> Dict[str, VariableDefinition]:
        result: Dict[str, VariableDefinition] = {}
        for var_name, var_config in variables.items():
            var_name = str(var_name)
            if not isinstance(var_config, dict):
                errors.append(f"Variable '{var_name}' must be an object")
                continue
            variable = self._parse_variable(var_name, var_config, errors, warnings)
            if variable is not None:
                result[var_name] = variable
        return result

    def _parse_variable(
        self,
        var_name: str,
        config: Mapping[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> Optional[VariableDefinition]:
        raw_type = config.get("type")
        if not raw_type:
            errors.append(f"Variable '{var_name}' must have a type")
            return None
        if raw_type not in VALID_VARIABLE_TYPES:
            errors.append(f"Variable '{var_name}' has invalid type: {raw_type}")
            return None

        variable = VariableDefinition(type=VariableType(raw_type))

        required = config.get("required")
        if required is not None:
            if isinstance(required, bool):
                variable.required = required
            else:
                warnings.append(f"Variable '{var_name}' required field should be boolean")

        if config.get("default") is not None:
            if variable.required:
                warnings.append(f"Variable '{var_name}' cannot have default value when required")
            else:
                variable.default = config["default"]

        description = config.get("description")
        if description:
            if isinstance(description, str):
                variable.description = description
            else:
                warnings.append(f"Variable '{var_name}' description should be a string")

        pattern = config.get("pattern")
        if pattern:
            if variable.type != VariableType.STRING:
                warnings.append(f"Variable '{var_name}' pattern only applies to string types")
            elif not isinstance(pattern, str):
                warnings.append(f"Variable '{var_name}' pattern should be a string")
            else:
                try:
                    re.compile(pattern)
                    variable.pattern = pattern
                except re.error:
                    errors.append(f"Variable '{var_name}' has invalid regex pattern: {pattern}")

        values = config.get("values")
        if values is not None:
            if variable.type != VariableType.ENUM:
                warnings.append(f"Variable '{var_name}' values only apply to enum types")
            elif not isinstance(values, list):
                errors.append(f"Variable '{var_name}' values must be an array")
            else:
                variable.values = [v for v in values if isinstance(v, str)]
                if not variable.values:
                    errors.append(f"Variable '{var_name}' enum must have at least one value")

        for bound in ("min", "max"):
            bound_value = config.get(bound)
            if bound_value is None:
                continue
            if variable.type != VariableType.NUMBER:
                warnings.append(f"Variable '{var_name}' {bound} only applies to number types")
            elif not _is_number(bound_value):
                warnings.append(f"Variable '{var_name}' {bound} should be a number")
            else:
                setattr(variable, bound, bound_value)

        multiple = config.get("multiple")
        if multiple is not None:
            if variable.type != VariableType.ENUM:
                warnings.append(f"Variable '{var_name}' multiple only applies to enum types")
            elif not isinstance(multiple, bool):
                warnings.append(f"Variable '{var_name}' multiple should be a boolean")
            else:
                variable.multiple = multiple

        return variable

    def _parse_examples(
        self,
        examples: List[Any],
        variables: Mapping[str, VariableDefinition],
        warnings: List[str],
    ) -> List[TemplateExample]:
        result = []
        for index, example in enumerate(examples):
            label = f"Example {index + 1}"
            if not isinstance(example, dict):
                warnings.append(f"{label} must be an object")
                continue
            title = example.get("title")
            if not title or not isinstance(title, str):
                warnings.append(f"{label} must have a title")
                continue
            example_vars = example.get("variables")
            if not isinstance(example_vars, dict):
                warnings.append(f"{label} must have variables")
                continue

            for var_name in example_vars:
                if var_name not in variables:
                    warnings.append(f"{label} references undefined variable: {var_name}")

            description = example.get("description")
            result.append(
                TemplateExample(
                    title=title,
                    variables=dict(example_vars),
                    description=description if isinstance(description, str) else None,
                )
            )
        return result

    # -------------------------------------------------------------------------
    # Engines, hooks, settings
    # -------------------------------------------------------------------------

    def _parse_engines(self, engines: Any, warnings: List[str]) -> Dict[str, str]:
        if not isinstance(engines, dict):
            warnings.append("Engines should be an object")
            return {}
        result = {}
        for key, value in engines.items():
            if isinstance(value, str):
                result[str(key)] = value
            else:
                warnings.append(f"Engine '{key}' requirement should be a string")
        return result

    def _parse_hooks(self, hooks: Any, warnings: List[str]) -> Hooks:
        if not isinstance(hooks, dict):
            warnings.append("Hooks should be an object")
            return Hooks()
        result = Hooks()
        for phase in ("pre", "post", "error"):
            if not hooks.get(phase):
                continue
            commands, dropped = _string_list(hooks[phase])
            if not isinstance(hooks[phase], list):
                warnings.append(f"{phase.capitalize()} hooks should be an array of strings")
            elif dropped:
                warnings.append(f"Some {phase} hooks were ignored (must be strings)")
            setattr(result, phase, commands)
        return result

    def _parse_settings(self, settings: Any, warnings: List[str]) -> Settings:
        if not isinstance(settings, dict):
            warnings.append("Settings should be an object")
            return Settings()

        result = Settings()

        timeout = settings.get("timeout")
        if timeout is not None:
            if _is_number(timeout) and timeout > 0:
                result.timeout = timeout
            else:
                warnings.append("Settings timeout should be a positive number")

        retries = settings.get("retries")
        if retries is not None:
            if _is_number(retries) and retries >= 0:
                result.retries = int(retries)
            else:
                warnings.append("Settings retries should be a non-negative number")

        continue_on_error = settings.get("continueOnError")
        if continue_on_error is not None:
            if isinstance(continue_on_error, bool):
                result.continue_on_error = continue_on_error
            else:
                warnings.append("Settings continueOnError should be a boolean")

        max_parallel = settings.get("maxParallelSteps")
        if max_parallel is not None:
            if _is_number(max_parallel) and max_parallel > 0:
                result.max_parallel_steps = int(max_parallel)
            else:
                warnings.append("Settings maxParallelSteps should be a positive number")

        working_dir = settings.get("workingDir")
        if working_dir is not None:
            if isinstance(working_dir, str):
                result.working_dir = working_dir
            else:
                warnings.append("Settings workingDir should be a string")

        return result

    # -------------------------------------------------------------------------
    # Composition directives
    # -------------------------------------------------------------------------

    def _parse_strategy(
        self, value: Any, label: str, warnings: List[str], allowed=None
    ) -> ConflictStrategy:
        allowed = allowed or tuple(ConflictStrategy)
        try:
            strategy = ConflictStrategy(value)
        except ValueError:
            strategy = None
        if strategy is None or strategy not in allowed:
            warnings.append(f"{label} has unknown strategy '{value}', using 'merge'")
            return ConflictStrategy.MERGE
        return strategy

    def _parse_includes(self, includes: List[Any], warnings: List[str]) -> List[Include]:
        result = []
        include_strategies = tuple(s for s in ConflictStrategy if s != ConflictStrategy.PROMPT)
        for index, entry in enumerate(includes):
            label = f"Include {index + 1}"
            if isinstance(entry, str) and entry.strip():
                result.append(Include(url=entry.strip()))
                continue
            if not isinstance(entry, dict):
                warnings.append(f"{label} must be a string or object")
                continue
            url = entry.get("url")
            if not url or not isinstance(url, str):
                warnings.append(f"{label} must have a url")
                continue

            include = Include(url=url)

            version = entry.get("version")
            if isinstance(version, str) and version:
                include.version = version

            overrides = entry.get("variables")
            if overrides is not None:
                if isinstance(overrides, dict):
                    include.variables = dict(overrides)
                else:
                    warnings.append(f"{label} variables should be an object")

            condition = entry.get("condition")
            if condition is not None:
                if isinstance(condition, str):
                    include.condition = condition
                else:
                    warnings.append(f"{label} condition should be a string")

            if entry.get("strategy") is not None:
                include.strategy = self._parse_strategy(
                    entry["strategy"], label, warnings, include_strategies
                )

            result.append(include)
        return result

    def _parse_conflicts(self, conflicts: Any, warnings: List[str]) -> ConflictPolicy:
        if not isinstance(conflicts, dict):
            warnings.append("Conflicts should be an object")
            return ConflictPolicy(strategy=self.default_conflict_strategy)

        policy = ConflictPolicy(strategy=self.default_conflict_strategy)
        if conflicts.get("strategy") is not None:
            policy.strategy = self._parse_strategy(conflicts["strategy"], "Conflicts", warnings)

        rules = conflicts.get("rules")
        if rules is not None:
            if not isinstance(rules, dict):
                warnings.append("Conflict rules should be an object")
            else:
                for category, value in rules.items():
                    if category not in CONFLICT_CATEGORIES:
                        warnings.append(f"Conflict rule for unknown category '{category}' ignored")
                        continue
                    policy.rules[category] = self._parse_strategy(
                        value, f"Conflict rule '{category}'", warnings
                    )
        return policy

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _parse_steps(
        self, steps: List[Any], errors: List[str], warnings: List[str]
    ) -> List[Step]:
        result: List[Step] = []
        names: List[str] = []
        graph: Dict[str, List[str]] = {}

        for index, raw in enumerate(steps):
            if not isinstance(raw, dict):
                errors.append(f"Step {index + 1} must be an object")
                continue
            step = self._parse_step(raw, index + 1, errors, warnings)
            if step is None:
                continue

            if step.name in names:
                errors.append(f"Duplicate step name: '{step.name}'")
            else:
                names.append(step.name)
            result.append(step)

            if step.depends_on:
                graph[step.name] = list(step.depends_on)

        cycle = find_dependency_cycle(graph)
        if cycle:
            errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

        for step_name, deps in graph.items():
            for dep in deps:
                if dep not in names:
                    warnings.append(f"Step '{step_name}' depends on undefined step: '{dep}'")

        return result

    def _parse_step(
        self,
        raw: Mapping[str, Any],
        index: int,
        errors: List[str],
        warnings: List[str],
    ) -> Optional[Step]:
        name = raw.get("name")
        if not name or not isinstance(name, str):
            errors.append(f"Step {index} must have a name (string)")
            return None

        tool_value = raw.get("tool")
        if not tool_value:
            for key, tool in _TOOL_SHORTHANDS:
                if raw.get(key):
                    tool_value = tool.value
                    break
        if tool_value not in VALID_TOOL_TYPES:
            errors.append(
                f"Step '{name}' must have a valid tool type ({', '.join(VALID_TOOL_TYPES)})"
            )
            return None
        tool = ToolType(tool_value)

        config = self._parse_step_config(tool, name, raw, errors, warnings)
        if config is None:
            return None

        step = Step(name=name, tool=tool, config=config)

        description = raw.get("description")
        if isinstance(description, str) and description:
            step.description = description

        when = raw.get("when")
        if when is not None:
            if not isinstance(when, str):
                warnings.append(f"Step '{name}' condition should be a string")
            else:
                if is_degenerate_condition(when):
                    warnings.append(f"Step '{name}' has potentially invalid condition expression")
                step.when = when

        depends_on = raw.get("dependsOn")
        if depends_on is not None:
            deps, dropped = _string_list(depends_on)
            if not isinstance(depends_on, list):
                warnings.append(f"Step '{name}' dependsOn should be an array of strings")
            elif dropped:
                warnings.append(f"Step '{name}' has some invalid dependencies (must be strings)")
            step.depends_on = deps

        for key, attr in (("parallel", "parallel"), ("continueOnError", "continue_on_error")):
            value = raw.get(key)
            if value is None:
                continue
            if isinstance(value, bool):
                setattr(step, attr, value)
            else:
                warnings.append(f"Step '{name}' {key} should be a boolean")

        timeout = raw.get("timeout")
        if timeout is not None:
            if _is_number(timeout) and timeout > 0:
                step.timeout = timeout
            else:
                warnings.append(f"Step '{name}' timeout should be a positive number")

        retries = raw.get("retries")
        if retries is not None:
            if _is_number(retries) and retries >= 0:
                step.retries = int(retries)
            else:
                warnings.append(f"Step '{name}' retries should be a non-negative number")

        if raw.get("tags") is not None:
            step.tags, _ = _string_list(raw["tags"])

        for key in ("variables", "environment"):
            value = raw.get(key)
            if isinstance(value, dict):
                setattr(step, key, dict(value))
            elif value is not None:
                warnings.append(f"Step '{name}' {key} should be an object")

        return step

    def _parse_step_config(
        self,
        tool: ToolType,
        name: str,
        raw: Mapping[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> Optional[StepConfig]:
        def flag(key: str) -> Optional[bool]:
            value = raw.get(key)
            return value if isinstance(value, bool) else None

        def mapping(key: str) -> Dict[str, Any]:
            value = raw.get(key)
            return dict(value) if isinstance(value, dict) else {}

        if tool == ToolType.TEMPLATE:
            template = raw.get("template")
            if not template or not isinstance(template, str):
                errors.append(f"Template step '{name}' must have a template (string)")
                return None
            engine = raw.get("engine")
            if engine is not None and engine not in VALID_TEMPLATE_ENGINES:
                warnings.append(f"Template step '{name}' has unknown engine: {engine}")
                engine = None
            output_dir = raw.get("outputDir")
            exclude, _ = _string_list(raw.get("exclude", []))
            return TemplateStepConfig(
                template=template,
                engine=engine,
                output_dir=output_dir if isinstance(output_dir, str) else None,
                overwrite=flag("overwrite"),
                exclude=exclude,
            )

        if tool == ToolType.ACTION:
            action = raw.get("action")
            if not action or not isinstance(action, str):
                errors.append(f"Action step '{name}' must have an action (string)")
                return None
            return ActionStepConfig(
                action=action,
                parameters=mapping("parameters"),
                dry_run=flag("dryRun"),
                force=flag("force"),
            )

        if tool == ToolType.CODEMOD:
            codemod = raw.get("codemod")
            if not codemod or not isinstance(codemod, str):
                errors.append(f"CodeMod step '{name}' must have a codemod (string)")
                return None
            files = raw.get("files")
            if not isinstance(files, list) or not files:
                errors.append(
                    f"CodeMod step '{name}' must have a files array with at least one pattern"
                )
                return None
            valid_files, dropped = _string_list(files)
            if dropped:
                warnings.append(
                    f"CodeMod step '{name}' has some invalid file patterns (must be strings)"
                )
            if not valid_files:
                errors.append(f"CodeMod step '{name}' must have at least one valid file pattern")
                return None
            parser = raw.get("parser")
            if parser is not None and parser not in VALID_CODEMOD_PARSERS:
                warnings.append(f"CodeMod step '{name}' has unknown parser: {parser}")
                parser = None
            return CodeModStepConfig(
                codemod=codemod,
                files=valid_files,
                backup=flag("backup"),
                parser=parser,
                parameters=mapping("parameters"),
                force=flag("force"),
            )

        if tool == ToolType.RECIPE:
            recipe = raw.get("recipe")
            if not recipe or not isinstance(recipe, str):
                errors.append(f"Recipe step '{name}' must have a recipe (string)")
                return None
            version = raw.get("version")
            return RecipeStepConfig(
                recipe=recipe,
                version=version if isinstance(version, str) else None,
                inherit_variables=flag("inheritVariables"),
                variable_overrides=mapping("variableOverrides"),
            )

        command = raw.get("command")
        if not command or not isinstance(command, str):
            errors.append(f"Shell step '{name}' must have a command (string)")
            return None
        cwd = raw.get("cwd")
        return ShellStepConfig(
            command=command,
            cwd=cwd if isinstance(cwd, str) else None,
            shell_env={str(k): str(v) for k, v in mapping("env").items()},
        )

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def _schema_warnings(self, data: Mapping[str, Any]) -> List[str]:
        from jsonschema import Draft7Validator

        if self._schema is None:
            with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
                self._schema = json.load(f)

        validator = Draft7Validator(self._schema)
        warnings = []
        for error in validator.iter_errors(data):
            path = ".".join(str(p) for p in error.absolute_path) or "root"
            warnings.append(f"Schema: {path}: {error.message}")
        return warnings

    # -------------------------------------------------------------------------
    # Caller-supplied values
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_variable_value(
        name: str, value: Any, variable: VariableDefinition
    ) -> Tuple[bool, Optional[str]]:
        """Check a caller-supplied value against a variable definition.

        Returns:
            Tuple of (is_valid, error message or None).
        """
        if variable.required and (value is None or value == ""):
            return False, f"Variable '{name}' is required"
        if value is None:
            return True, None

        vtype = variable.type
        if vtype == VariableType.STRING:
            if not isinstance(value, str):
                return False, f"Variable '{name}' must be a string"
            if variable.pattern and not re.search(variable.pattern, value):
                return False, f"Variable '{name}' does not match pattern: {variable.pattern}"
        elif vtype == VariableType.NUMBER:
            if not _is_number(value):
                return False, f"Variable '{name}' must be a number"
            if variable.min is not None and value < variable.min:
                return False, f"Variable '{name}' must be >= {variable.min}"
            if variable.max is not None and value > variable.max:
                return False, f"Variable '{name}' must be <= {variable.max}"
        elif vtype == VariableType.BOOLEAN:
            if not isinstance(value, bool):
                return False, f"Variable '{name}' must be a boolean"
        elif vtype == VariableType.ENUM:
            allowed = variable.values or []
            if variable.multiple and isinstance(value, list):
                for item in value:
                    if item not in allowed:
                        return False, (
                            f"Value '{item}' for variable '{name}' must be one of: "
                            f"{', '.join(allowed)}"
                        )
            elif value not in allowed:
                return False, f"Variable '{name}' must be one of: {', '.join(allowed)}"
        elif vtype == VariableType.ARRAY:
            if not isinstance(value, list):
                return False, f"Variable '{name}' must be an array"
        elif vtype == VariableType.OBJECT:
            if not isinstance(value, dict):
                return False, f"Variable '{name}' must be an object"
        return True, None

    @staticmethod
    def get_resolved_value(value: Any, variable: VariableDefinition) -> Any:
        """Return the supplied value, or the variable default when absent."""
        return value if value is not None else variable.default


def find_dependency_cycle(graph: Mapping[str, List[str]]) -> Optional[List[str]]:
    """Find the first cycle in a dependsOn graph.

    Depth-first traversal with a recursion stack. The returned path starts and
    ends with the same step name, e.g. ["a", "b", "a"].
    """
    visited = set()
    on_stack = set()

    def visit(node: str, path: List[str]) -> Optional[List[str]]:
        if node in on_stack:
            return path[path.index(node):] + [node]
        if node in visited:
            return None
        visited.add(node)
        on_stack.add(node)
        for dep in graph.get(node, []):
            cycle = visit(dep, path + [node])
            if cycle:
                return cycle
        on_stack.discard(node)
        return None

    for node in graph:
        if node not in visited:
            cycle = visit(node, [])
            if cycle:
                return cycle
    return None
