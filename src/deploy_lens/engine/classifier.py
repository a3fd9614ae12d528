"""Build classification from project name and source reference.

Everything here is pure: the same raw CodeBuild record and rules always
produce the same result, and nothing touches the network.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from deploy_lens.domain.models import (
    ArtifactDescriptor,
    BuildCategory,
    BuildRecord,
    BuildStatus,
    SourceBranch,
    image_tag,
)
from deploy_lens.topology.models import ClassifierRules

logger = logging.getLogger(__name__)

_PR_REFERENCE_PATTERNS = (
    re.compile(r"^pr/(\d+)$", re.IGNORECASE),
    re.compile(r"^refs/pull/(\d+)(?:/(?:head|merge))?$", re.IGNORECASE),
)
_DIGITS = re.compile(r"^#?(\d+)$")

IMAGE_URI_VARIABLES = ("IMAGE_URI", "DOCKER_IMAGE")
_ECR_HOST_MARKER = ".dkr.ecr."


@dataclass(frozen=True)
class Classification:
    category: BuildCategory
    is_deployable: bool
    pr_number: str | None
    source_branch: SourceBranch | None


UNKNOWN_CLASSIFICATION = Classification(
    category=BuildCategory.UNKNOWN,
    is_deployable=False,
    pr_number=None,
    source_branch=None,
)


def environment_variables(raw: dict[str, object], key: str = "environment") -> dict[str, str]:
    """Flatten CodeBuild ``[{name, value}]`` variable lists into a dict."""
    if key == "environment":
        env = raw.get("environment")
        variables = env.get("environmentVariables") if isinstance(env, dict) else None
    else:
        variables = raw.get(key)
    if not isinstance(variables, list):
        return {}
    result: dict[str, str] = {}
    for item in variables:
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            value = item.get("value")
            result[item["name"]] = "" if value is None else str(value)
    return result


def _matches_ref(reference: str, tracked: str) -> bool:
    return reference == tracked or reference.endswith(f"/{tracked}")


def pr_number_from_reference(reference: str | None) -> str | None:
    if not reference:
        return None
    for pattern in _PR_REFERENCE_PATTERNS:
        match = pattern.match(reference.strip())
        if match:
            return match.group(1)
    return None


def source_branch_for(reference: str | None, rules: ClassifierRules) -> SourceBranch | None:
    if not reference:
        return None
    reference = reference.strip()
    if _matches_ref(reference, rules.main_ref):
        return SourceBranch.MAIN
    if _matches_ref(reference, rules.dev_ref):
        return SourceBranch.DEV
    if reference.startswith(rules.pr_ref_prefix) or pr_number_from_reference(reference):
        return SourceBranch.FEATURE
    return None


def trigger_pr_hint(variables: dict[str, str], names: list[str]) -> str | None:
    for name in names:
        match = _DIGITS.match(variables.get(name, "").strip())
        if match:
            return match.group(1)
    return None


def is_direct_branch(branch: SourceBranch | None) -> bool:
    return branch in (SourceBranch.MAIN, SourceBranch.DEV)


def classify_build(raw: dict[str, object], rules: ClassifierRules) -> Classification:
    """Assign category, PR number and source branch to a raw build.

    Malformed records come back as ``unknown`` instead of raising so one bad
    record never stops a batch.
    """
    try:
        return _classify(raw, rules)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Could not classify build %r: %s", _safe_id(raw), exc)
        return UNKNOWN_CLASSIFICATION


def _safe_id(raw: object) -> object:
    return raw.get("id") if isinstance(raw, dict) else None


def _classify(raw: dict[str, object], rules: ClassifierRules) -> Classification:
    project_name = raw.get("projectName")
    if not isinstance(project_name, str) or not project_name.strip():
        raise ValueError("missing project name")
    source_version = raw.get("sourceVersion")
    if source_version is not None and not isinstance(source_version, str):
        raise TypeError(f"unexpected source version {source_version!r}")

    branch = source_branch_for(source_version, rules)
    pr_number = None
    if not is_direct_branch(branch):
        pr_number = trigger_pr_hint(environment_variables(raw), rules.pr_hint_variables)

    if rules.dev_test_marker in project_name:
        return Classification(BuildCategory.DEV_TEST, False, pr_number, branch)
    if rules.main_test_marker in project_name:
        return Classification(BuildCategory.MAIN_TEST, False, pr_number, branch)
    return Classification(BuildCategory.PRODUCTION, True, pr_number, branch)


def _parse_time(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def extract_artifact(
    raw: dict[str, object],
    image_repository: str | None = None,
) -> ArtifactDescriptor:
    """Fingerprint of a build's output used for deployment correlation."""
    artifacts = raw.get("artifacts")
    artifacts = artifacts if isinstance(artifacts, dict) else {}
    exported = environment_variables(raw, key="exportedEnvironmentVariables")

    image_uri = next((exported[name] for name in IMAGE_URI_VARIABLES if exported.get(name)), None)
    if image_uri is None:
        repository = exported.get("REPOSITORY_URI")
        tag = exported.get("IMAGE_TAG") or exported.get("COMMIT_HASH")
        if repository and tag and _ECR_HOST_MARKER in repository and image_tag(repository) is None:
            image_uri = f"{repository}:{tag}"

    commit = raw.get("resolvedSourceVersion")
    if image_uri is None and image_repository and isinstance(commit, str) and commit:
        image_uri = f"{image_repository}:{commit[:7]}"

    return ArtifactDescriptor(
        md5_hash=artifacts.get("md5sum") or None,
        sha256_hash=artifacts.get("sha256sum") or None,
        location=artifacts.get("location") or None,
        image_uri=image_uri,
    )


def build_record_from_raw(
    raw: dict[str, object],
    classification: Classification,
    image_repository: str | None = None,
) -> BuildRecord:
    logs = raw.get("logs")
    build_number = raw.get("buildNumber")
    commit = raw.get("resolvedSourceVersion")
    return BuildRecord(
        build_id=str(raw.get("id") or ""),
        build_number=build_number if isinstance(build_number, int) else None,
        project_name=str(raw.get("projectName") or ""),
        status=BuildStatus.parse(raw.get("buildStatus")),
        category=classification.category,
        is_deployable=classification.is_deployable,
        pr_number=classification.pr_number,
        source_branch=classification.source_branch,
        source_version=raw.get("sourceVersion") if isinstance(raw.get("sourceVersion"), str) else None,
        resolved_commit=commit if isinstance(commit, str) and commit else None,
        start_time=_parse_time(raw.get("startTime")),
        end_time=_parse_time(raw.get("endTime")),
        artifact=extract_artifact(raw, image_repository),
        log_group=logs.get("groupName") if isinstance(logs, dict) else None,
    )
