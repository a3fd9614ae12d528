"""Query surface over builds, deployments and coordination state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from deploy_lens.domain.models import (
    BuildCategory,
    BuildRecord,
    BuildStatus,
    Component,
    CoordinationState,
    DeploymentActivity,
    DeploymentRecord,
    EnvironmentDeployment,
    PipelineExecutionRecord,
)
from deploy_lens.engine.classifier import build_record_from_raw, classify_build
from deploy_lens.engine.coordinator import CoordinationInputs, derive_coordination_state
from deploy_lens.engine.correlator import ArtifactCorrelator
from deploy_lens.engine.hotfix import HotfixDetector
from deploy_lens.engine.pr_resolver import (
    MergeCommitSearch,
    PRResolver,
    PullRequestDetailsEnricher,
    default_pr_resolver,
)
from deploy_lens.engine.staleness import CommitDrift, StalenessChecker, StalenessResult
from deploy_lens.errors import ExternalServiceError
from deploy_lens.execution.cache import TTLCache
from deploy_lens.execution.throttle import RequestThrottler
from deploy_lens.sources.codebuild import CodeBuildSource
from deploy_lens.sources.codepipeline import CodePipelineSource
from deploy_lens.sources.github import GitHubSource
from deploy_lens.sources.s3 import ObjectStoreSource
from deploy_lens.topology.models import EnvironmentConfig, TopologyConfig

logger = logging.getLogger(__name__)

MANUAL_TRIGGER = "StartPipelineExecution"
IN_PROGRESS = "InProgress"
_IGNORED_ID_SUFFIX_LENGTH = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _start_key(build: BuildRecord) -> tuple[float, str]:
    return (build.start_time.timestamp() if build.start_time else 0.0, build.build_id)


def select_execution(
    executions: list[PipelineExecutionRecord],
    since: datetime | None = None,
) -> tuple[PipelineExecutionRecord | None, bool]:
    """Pick the execution that represents what is deployed right now.

    *executions* are newest first. Manually started successful runs win over
    event-triggered ones. The flag tells whether a run is still in progress.
    """
    recent = [
        execution
        for execution in executions
        if execution.last_update_time is not None
        and (since is None or execution.last_update_time >= since)
    ]
    deploying = any(execution.status == IN_PROGRESS for execution in recent)
    succeeded = [execution for execution in recent if execution.succeeded]
    chosen = next(
        (execution for execution in succeeded if execution.trigger_type == MANUAL_TRIGGER),
        None,
    )
    if chosen is None and succeeded:
        chosen = succeeded[0]
    return chosen, deploying


def available_update(
    builds: list[BuildRecord],
    project_name: str | None,
    current: DeploymentRecord | None,
) -> BuildRecord | None:
    if project_name is None:
        return None
    deployable = [
        build
        for build in builds
        if build.project_name == project_name
        and build.category is BuildCategory.PRODUCTION
        and build.is_deployable
        and build.succeeded
    ]
    if not deployable:
        return None
    latest = max(deployable, key=_start_key)
    if current is not None:
        if current.matched_build is not None and current.matched_build.build_id == latest.build_id:
            return None
        if current.deployed_at is not None and (
            latest.start_time is None or latest.start_time <= current.deployed_at
        ):
            return None
    return latest


def latest_per_project(builds: list[BuildRecord]) -> list[BuildRecord]:
    latest: dict[str, BuildRecord] = {}
    for build in builds:
        known = latest.get(build.project_name)
        if known is None or _start_key(build) > _start_key(known):
            latest[build.project_name] = build
    return sorted(latest.values(), key=lambda build: build.project_name)


@dataclass(frozen=True)
class BuildListing:
    builds: list[BuildRecord]
    generated_at: datetime

    def category(self, category: BuildCategory) -> list[BuildRecord]:
        return [build for build in self.builds if build.category is category]

    @property
    def deployment_builds(self) -> list[BuildRecord]:
        return [
            build
            for build in self.category(BuildCategory.PRODUCTION)
            if build.is_deployable and build.succeeded
        ]

    def summary(self) -> dict[str, object]:
        dev = self.category(BuildCategory.DEV_TEST)
        return {
            "totalBuilds": len(self.builds),
            "devTestBuilds": len(dev),
            "deploymentBuilds": len(self.deployment_builds),
            "mainTestBuilds": len(self.category(BuildCategory.MAIN_TEST)),
            "unknownBuilds": len(self.category(BuildCategory.UNKNOWN)),
            "failedDevBuilds": sum(1 for build in dev if build.status is BuildStatus.FAILED),
            "uniqueProjects": len({build.project_name for build in self.builds}),
            "lastUpdated": self.generated_at.isoformat(),
        }

    def to_dict(self) -> dict[str, object]:
        def _latest(category: BuildCategory) -> list[dict[str, object]]:
            return [build.to_dict() for build in latest_per_project(self.category(category))]

        return {
            "devBuilds": _latest(BuildCategory.DEV_TEST),
            "deploymentBuilds": [
                build.to_dict() for build in latest_per_project(self.deployment_builds)
            ],
            "mainTestBuilds": _latest(BuildCategory.MAIN_TEST),
            "unknownBuilds": _latest(BuildCategory.UNKNOWN),
            "summary": self.summary(),
        }


@dataclass(frozen=True)
class CoordinationReport:
    environment: str
    state: CoordinationState
    staleness: tuple[StalenessResult, ...]
    deployment: EnvironmentDeployment

    def to_dict(self) -> dict[str, object]:
        payload = self.state.to_dict()
        payload["environment"] = self.environment
        payload["staleness"] = [result.to_dict() for result in self.staleness]
        payload["availableUpdates"] = self.deployment.to_dict()["availableUpdates"]
        return payload


class DeployLensService:
    def __init__(
        self,
        topology: TopologyConfig,
        codebuild: CodeBuildSource,
        pipelines: CodePipelineSource,
        object_store: ObjectStoreSource,
        github: GitHubSource,
        cache: TTLCache,
        *,
        throttlers: dict[str, RequestThrottler] | None = None,
        pr_resolver: PRResolver | None = None,
        correlator: ArtifactCorrelator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._topology = topology
        self._codebuild = codebuild
        self._pipelines = pipelines
        self._github = github
        self._cache = cache
        self._throttlers = dict(throttlers or {})
        self._pr_resolver = pr_resolver or default_pr_resolver(github, topology)
        self._merge_search = MergeCommitSearch(github, topology)
        self._hotfix = HotfixDetector(github, topology)
        self._enricher = PullRequestDetailsEnricher(github, topology)
        self._correlator = correlator or ArtifactCorrelator.with_sources(pipelines, object_store)
        self._staleness = StalenessChecker(github, topology)
        self._clock = clock

    @property
    def topology(self) -> TopologyConfig:
        return self._topology

    # -- builds ---------------------------------------------------------------

    async def collect_builds(self, projects: list[str] | None = None) -> list[BuildRecord]:
        """Classified and enriched builds for *projects* (all known projects by default)."""
        projects = projects if projects is not None else self._topology.all_projects
        tasks = [asyncio.create_task(self._project_builds(name)) for name in projects]
        try:
            per_project = await asyncio.gather(*tasks)
        except BaseException:
            # Free throttler slots held by the other projects.
            for task in tasks:
                task.cancel()
            raise
        builds = [build for group in per_project for build in group]

        builds = await self._merge_search.apply(builds)
        builds = await self._hotfix.apply(builds)
        builds = [await self._enricher.enrich(build) for build in builds]
        return [build for build in builds if not self._is_ignored(build)]

    async def _project_builds(self, project_name: str) -> list[BuildRecord]:
        try:
            ids = await self._codebuild.list_build_ids(
                project_name, self._topology.builds_per_project
            )
            raw_builds = await self._codebuild.batch_get_builds(ids) if ids else []
        except ExternalServiceError as exc:
            logger.warning("Skipping builds of %s: %s", project_name, exc)
            return []

        image_repository = self._topology.image_repository_for(Component.from_name(project_name))
        records: list[BuildRecord] = []
        for raw in raw_builds:
            try:
                classification = classify_build(raw, self._topology.classifier)
                record = build_record_from_raw(raw, classification, image_repository)
                records.append(await self._pr_resolver.resolve(record, raw))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                build_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning("Skipping malformed build %r of %s: %s", build_id, project_name, exc)
        logger.debug("Loaded %d builds for %s", len(records), project_name)
        return records

    def _is_ignored(self, build: BuildRecord) -> bool:
        key = f"{build.project_name}:{build.build_id[-_IGNORED_ID_SUFFIX_LENGTH:]}"
        return key in self._topology.ignored_builds

    async def list_builds(self) -> BuildListing:
        return BuildListing(builds=await self.collect_builds(), generated_at=self._clock())

    # -- deployments ----------------------------------------------------------

    def _environments(self, environment: str | None) -> list[EnvironmentConfig]:
        if environment is None:
            return list(self._topology.environments)
        env = self._topology.environment(environment)
        if env is None:
            known = ", ".join(self._topology.environment_names)
            raise ValueError(f"Unknown environment '{environment}'. Known: {known}")
        return [env]

    async def deployment_status(self, environment: str | None = None) -> list[EnvironmentDeployment]:
        environments = self._environments(environment)
        builds = await self.collect_builds(self._topology.deployment_projects)
        known_pipelines = set(await self._pipelines.list_pipelines())
        return [await self._environment_status(env, builds, known_pipelines) for env in environments]

    async def _environment_status(
        self,
        env: EnvironmentConfig,
        builds: list[BuildRecord],
        known_pipelines: set[str],
    ) -> EnvironmentDeployment:
        current: dict[Component, DeploymentRecord | None] = {}
        updates: dict[Component, BuildRecord | None] = {}
        for component in Component:
            pipeline_name = env.pipeline_for(component)
            record = None
            if pipeline_name and pipeline_name in known_pipelines:
                record = await self._current_deployment(env, component, pipeline_name, builds)
            elif pipeline_name:
                logger.info("Pipeline %s for %s is not deployed", pipeline_name, env.name)
            current[component] = record
            updates[component] = available_update(builds, env.project_for(component), record)

        deployed_times = [
            record.deployed_at for record in current.values() if record and record.deployed_at
        ]
        return EnvironmentDeployment(
            environment=env.name,
            current=current,
            available_updates=updates,
            last_deployed_at=max(deployed_times) if deployed_times else None,
        )

    async def _current_deployment(
        self,
        env: EnvironmentConfig,
        component: Component,
        pipeline_name: str,
        builds: list[BuildRecord],
    ) -> DeploymentRecord | None:
        try:
            executions = await self._pipelines.list_executions(
                pipeline_name, self._topology.executions_per_pipeline
            )
            chosen, deploying = select_execution(executions, self._topology.query_start_date)
            if chosen is None:
                logger.info("No successful execution of %s since the query start", pipeline_name)
                return None
            if not chosen.source_revisions:
                detail = await self._pipelines.get_execution(pipeline_name, chosen.execution_id)
                chosen = replace(chosen, source_revisions=detail.source_revisions)
            return await self._correlator.correlate(
                chosen,
                builds,
                component=component,
                environment=env.name,
                project_name=env.project_for(component),
                activity=DeploymentActivity.DEPLOYING if deploying else DeploymentActivity.DEPLOYED,
            )
        except ExternalServiceError as exc:
            logger.warning("Skipping pipeline %s: %s", pipeline_name, exc)
            return None

    # -- coordination ---------------------------------------------------------

    async def coordination_report(self, environment: str) -> CoordinationReport:
        env = self._environments(environment)[0]
        builds = await self.collect_builds()
        known_pipelines = set(await self._pipelines.list_pipelines())
        deployment = await self._environment_status(env, builds, known_pipelines)

        staleness = {
            component: await self._staleness.check(component, builds, env.project_for(component))
            for component in Component
        }
        backend = deployment.update_for(Component.BACKEND)
        frontend = deployment.update_for(Component.FRONTEND)
        inputs = CoordinationInputs(
            backend_update=backend is not None,
            frontend_update=frontend is not None,
            backend_stale=staleness[Component.BACKEND].is_stale,
            frontend_stale=staleness[Component.FRONTEND].is_stale,
            backend_updated_at=backend.start_time if backend else None,
            frontend_updated_at=frontend.start_time if frontend else None,
        )
        state = derive_coordination_state(
            inputs, window=timedelta(minutes=self._topology.coordination_window_minutes)
        )
        logger.info("Coordination state for %s: %s", env.name, state.status.value)
        return CoordinationReport(
            environment=env.name,
            state=state,
            staleness=tuple(staleness.values()),
            deployment=deployment,
        )

    async def coordination_state(self, environment: str) -> CoordinationState:
        return (await self.coordination_report(environment)).state

    # -- supplementary --------------------------------------------------------

    async def commit_comparison(self, component: str | Component) -> CommitDrift:
        resolved = component if isinstance(component, Component) else Component(component)
        builds = await self.collect_builds(self._topology.deployment_projects)
        return await self._staleness.commit_drift(resolved, builds)

    def cache_stats(self) -> dict[str, object]:
        return {
            "cache": self._cache.stats(),
            "throttlers": {name: throttler.stats() for name, throttler in self._throttlers.items()},
        }
