"""Topology configuration models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from deploy_lens.domain.models import Component


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class ClassifierRules(BaseModel):
    dev_test_marker: str = Field(default="devbranchtest")
    main_test_marker: str = Field(default="mainbranchtest")
    main_ref: str = Field(default="main")
    dev_ref: str = Field(default="dev")
    pr_ref_prefix: str = Field(default="pr/")
    pr_hint_variables: list[str] = Field(
        default_factory=lambda: ["CODEBUILD_WEBHOOK_PR_NUMBER", "TRIGGERED_FOR_PR"]
    )

    @field_validator("pr_hint_variables", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


class ComponentConfig(BaseModel):
    repository: str = Field(description="Version-control repository name")
    image_repository: str | None = Field(
        default=None,
        description="Registry/name used to build an image reference when a build exports none",
    )


class EnvironmentConfig(BaseModel):
    name: str
    projects: dict[Component, str] = Field(
        description="Build project (and deployment pipeline) name per component"
    )
    pipelines: dict[Component, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _default_pipelines(self) -> "EnvironmentConfig":
        # Pipelines are named after their build project unless overridden.
        for component, project in self.projects.items():
            self.pipelines.setdefault(component, project)
        return self

    def project_for(self, component: Component) -> str | None:
        return self.projects.get(component)

    def pipeline_for(self, component: Component) -> str | None:
        return self.pipelines.get(component)


class TopologyConfig(BaseModel):
    version: int = Field(default=1)
    components: dict[Component, ComponentConfig] = Field(default_factory=dict)
    environments: list[EnvironmentConfig] = Field(default_factory=list)
    test_projects: list[str] = Field(
        default_factory=list,
        description="dev-test and main-test build projects (not deployed anywhere)",
    )
    classifier: ClassifierRules = Field(default_factory=ClassifierRules)
    builds_per_project: int = Field(default=10, ge=1, le=100)
    executions_per_pipeline: int = Field(default=10, ge=1, le=100)
    query_start_date: datetime | None = Field(default=None)
    coordination_window_minutes: float = Field(default=10.0, gt=0)
    ignored_builds: list[str] = Field(
        default_factory=list,
        description="'<project>:<build id suffix>' entries left out of listings",
    )

    @field_validator("environments", "test_projects", "ignored_builds", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("query_start_date")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _unique_environments(self) -> "TopologyConfig":
        names = [env.name for env in self.environments]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate environment names: {', '.join(duplicates)}")
        return self

    def environment(self, name: str) -> EnvironmentConfig | None:
        for env in self.environments:
            if env.name == name:
                return env
        return None

    @property
    def environment_names(self) -> list[str]:
        return [env.name for env in self.environments]

    @property
    def deployment_projects(self) -> list[str]:
        projects: list[str] = []
        for env in self.environments:
            for project in env.projects.values():
                if project not in projects:
                    projects.append(project)
        return projects

    @property
    def all_projects(self) -> list[str]:
        projects = self.deployment_projects
        return projects + [p for p in self.test_projects if p not in projects]

    def repository_for(self, component: Component | None) -> str | None:
        if component is None:
            return None
        config = self.components.get(component)
        return config.repository if config else component.value

    def image_repository_for(self, component: Component | None) -> str | None:
        if component is None:
            return None
        config = self.components.get(component)
        return config.image_repository if config else None

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "TopologyConfig":
        return cls.model_validate(data)
