"""End-to-end tests: parse, compose and resolve dependencies in one call."""

import json

import pytest

from conftest import minimal_descriptor, write_template
from stencil.composition import CompositionError
from stencil.config import ResolverSettings
from stencil.dependencies import ResolutionOptions
from stencil.descriptor import ConflictStrategy
from stencil.pipeline import TemplateResolutionPipeline


@pytest.fixture
def project(tmp_path):
    """A project with a base template, a partial and an installed package."""
    write_template(
        tmp_path / "templates" / "base",
        {
            "name": "base",
            "version": "1.0.0",
            "variables": {"port": {"type": "number", "default": 8080}},
            "steps": [{"name": "install", "command": "npm install"}],
            "dependencies": ["lodash"],
        },
    )
    write_template(
        tmp_path / "templates" / "partials" / "docker",
        {
            "name": "docker",
            "variables": {"image": {"type": "string", "default": "node:20"}},
            "outputs": ["Dockerfile"],
        },
    )
    write_template(
        tmp_path / "templates" / "api",
        {
            "name": "api",
            "extends": "../base",
            "variables": {
                "name": {"type": "string", "required": True},
                "docker": {"type": "boolean", "default": False},
            },
            "includes": [{"url": "../partials/docker", "condition": "docker"}],
            "steps": [{"name": "build", "command": "npm run build", "dependsOn": ["install"]}],
            "dependencies": [{"name": "left-pad", "url": "./vendor/left-pad"}],
        },
    )
    write_template(tmp_path / "vendor" / "left-pad", minimal_descriptor("left-pad", version="1.3.0"))
    package = tmp_path / "node_modules" / "lodash"
    package.mkdir(parents=True)
    (package / "package.json").write_text(json.dumps({"version": "4.17.21"}))
    return tmp_path


class TestPipeline:
    """TemplateResolutionPipeline"""

    def test_full_resolution(self, project, manager):
        pipeline = TemplateResolutionPipeline(manager=manager)

        result = pipeline.run(
            project / "templates" / "api",
            variables={"name": "orders", "docker": True},
            project_root=project,
        )

        assert result.ok
        descriptor = result.composed.descriptor
        assert list(descriptor.variables) == ["port", "name", "docker", "image"]
        assert [s.name for s in descriptor.steps] == ["install", "build"]
        assert descriptor.outputs == ["Dockerfile"]
        assert result.composed.parent == "../base"
        assert [r.name for r in result.dependencies.resolved] == ["lodash", "left-pad"]

    def test_condition_false_skips_include(self, project, manager):
        result = TemplateResolutionPipeline(manager=manager).run(
            project / "templates" / "api", project_root=project
        )

        assert result.ok
        assert "image" not in result.composed.descriptor.variables
        assert result.composed.skipped[0].url == "../partials/docker"

    def test_invalid_descriptor_stops_after_parsing(self, tmp_path, manager):
        write_template(tmp_path / "broken", {"name": "broken"})

        result = TemplateResolutionPipeline(manager=manager).run(tmp_path / "broken")

        assert not result.ok
        assert result.composed is None
        assert result.dependencies is None
        assert "Template variables section is required and must be an object" in result.parsed.errors

    def test_missing_file(self, tmp_path, manager):
        result = TemplateResolutionPipeline(manager=manager).run(tmp_path / "nothing")
        assert not result.ok
        assert result.parsed.errors[0].startswith("Template file not found")

    def test_all_required_dependencies_failed(self, tmp_path, manager):
        write_template(tmp_path / "tpl", minimal_descriptor("tpl", dependencies=["ghost"]))

        result = TemplateResolutionPipeline(manager=manager).run(
            tmp_path / "tpl", project_root=tmp_path
        )

        assert result.composed is not None
        assert result.dependencies.all_required_failed
        assert not result.ok

    def test_explicit_options(self, project, manager):
        result = TemplateResolutionPipeline(manager=manager).run(
            project / "templates" / "api",
            project_root=project,
            options=ResolutionOptions(install_dir="elsewhere", project_root=str(project)),
        )
        missing = {m.name for m in result.dependencies.missing}
        assert missing == {"lodash"}

    def test_warnings_collected(self, tmp_path, manager):
        write_template(
            tmp_path / "tpl", minimal_descriptor("tpl", extends="../missing", tags=["a", 1])
        )

        result = TemplateResolutionPipeline(manager=manager).run(
            tmp_path / "tpl", project_root=tmp_path
        )

        assert "Some tags were ignored (must be strings)" in result.warnings
        assert any(w.startswith("Ignoring parent template") for w in result.warnings)


class TestFromSettings:
    """Pipelines built from ResolverSettings."""

    def test_settings_conflict_strategy_applies(self, tmp_path):
        write_template(tmp_path / "tpl", minimal_descriptor("tpl", extends="../missing"))
        settings = ResolverSettings(
            conflict_strategy=ConflictStrategy.FAIL, project_root=str(tmp_path)
        )

        pipeline = TemplateResolutionPipeline.from_settings(settings)

        with pytest.raises(CompositionError):
            pipeline.run(tmp_path / "tpl", project_root=tmp_path)

    def test_settings_install_dir(self, tmp_path):
        (tmp_path / "libs" / "lodash").mkdir(parents=True)
        write_template(tmp_path / "tpl", minimal_descriptor("tpl", dependencies=["lodash"]))
        settings = ResolverSettings(install_dir="libs", project_root=str(tmp_path))

        result = TemplateResolutionPipeline.from_settings(settings).run(
            tmp_path / "tpl", project_root=tmp_path
        )

        assert result.ok
        assert result.dependencies.resolved[0].path == str(tmp_path / "libs" / "lodash")
