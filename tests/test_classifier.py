from __future__ import annotations

from datetime import datetime, timezone

import pytest

from deploy_lens.domain.models import BuildCategory, BuildStatus, SourceBranch
from deploy_lens.engine.classifier import (
    UNKNOWN_CLASSIFICATION,
    build_record_from_raw,
    classify_build,
    extract_artifact,
    pr_number_from_reference,
    source_branch_for,
)
from deploy_lens.topology.models import ClassifierRules

RULES = ClassifierRules()
SHA = "abcdef1234567890abcdef1234567890abcdef12"
ECR = "123456789012.dkr.ecr.us-west-2.amazonaws.com/eval-backend"


def _raw(project: str, source_version: str | None = "main", **extra: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "id": f"{project}:0b6f7c3e-1111-2222-3333-444455556666",
        "projectName": project,
        "buildStatus": "SUCCEEDED",
        "resolvedSourceVersion": SHA,
    }
    if source_version is not None:
        raw["sourceVersion"] = source_version
    raw.update(extra)
    return raw


def _env(**variables: str) -> dict[str, object]:
    return {
        "environmentVariables": [
            {"name": name, "value": value, "type": "PLAINTEXT"} for name, value in variables.items()
        ]
    }


@pytest.mark.parametrize(
    ("project", "source_version", "category", "deployable", "branch"),
    [
        ("eval-backend-devbranchtest", "pr/123", BuildCategory.DEV_TEST, False, SourceBranch.FEATURE),
        ("eval-frontend-devbranchtest", "refs/pull/77/head", BuildCategory.DEV_TEST, False, SourceBranch.FEATURE),
        ("eval-backend-mainbranchtest", "main", BuildCategory.MAIN_TEST, False, SourceBranch.MAIN),
        ("eval-backend-prod", "refs/heads/main", BuildCategory.PRODUCTION, True, SourceBranch.MAIN),
        ("eval-frontend-sandbox", "dev", BuildCategory.PRODUCTION, True, SourceBranch.DEV),
        ("eval-frontend-sandbox", None, BuildCategory.PRODUCTION, True, None),
    ],
)
def test_classification_truth_table(project, source_version, category, deployable, branch) -> None:
    result = classify_build(_raw(project, source_version), RULES)

    assert result.category is category
    assert result.is_deployable is deployable
    assert result.source_branch is branch
    assert result.pr_number is None


def test_trigger_hint_sets_pr_for_feature_builds() -> None:
    raw = _raw("eval-backend-devbranchtest", "pr/123", environment=_env(TRIGGERED_FOR_PR="#123"))

    result = classify_build(raw, RULES)

    assert result.pr_number == "123"


def test_trigger_hint_ignored_for_direct_branches() -> None:
    raw = _raw("eval-backend-prod", "main", environment=_env(CODEBUILD_WEBHOOK_PR_NUMBER="55"))

    result = classify_build(raw, RULES)

    assert result.source_branch is SourceBranch.MAIN
    assert result.pr_number is None


def test_non_numeric_trigger_hint_is_ignored() -> None:
    raw = _raw("eval-backend-devbranchtest", "feature/x", environment=_env(TRIGGERED_FOR_PR="n/a"))

    assert classify_build(raw, RULES).pr_number is None


def test_classification_is_deterministic() -> None:
    raw = _raw("eval-backend-devbranchtest", "pr/9", environment=_env(TRIGGERED_FOR_PR="9"))

    assert classify_build(raw, RULES) == classify_build(raw, RULES)


def test_custom_main_ref() -> None:
    rules = ClassifierRules(main_ref="trunk")

    assert source_branch_for("trunk", rules) is SourceBranch.MAIN
    assert source_branch_for("main", rules) is None


@pytest.mark.parametrize(
    "raw",
    [
        {"id": "x"},
        {"id": "x", "projectName": "  "},
        {"id": "x", "projectName": "eval-backend-prod", "sourceVersion": 42},
    ],
)
def test_malformed_records_are_unknown(raw) -> None:
    assert classify_build(raw, RULES) == UNKNOWN_CLASSIFICATION


def test_unreadable_environment_block_is_tolerated() -> None:
    raw = _raw("eval-backend-prod", None, environment="not-a-dict")

    result = classify_build(raw, RULES)

    assert result.category is BuildCategory.PRODUCTION
    assert result.pr_number is None


def test_variable_blocks_that_are_not_lists_are_ignored() -> None:
    raw = _raw(
        "eval-backend-prod",
        "pr/7",
        environment={"environmentVariables": 5},
        exportedEnvironmentVariables="IMAGE_URI=x",
    )

    result = classify_build(raw, RULES)
    record = build_record_from_raw(raw, result, image_repository=ECR)

    assert result.category is BuildCategory.PRODUCTION
    assert result.pr_number is None
    assert record.artifact.image_uri == f"{ECR}:abcdef1"


def test_pr_number_from_reference() -> None:
    assert pr_number_from_reference("pr/12") == "12"
    assert pr_number_from_reference("refs/pull/34/merge") == "34"
    assert pr_number_from_reference("feature/pr/12") is None
    assert pr_number_from_reference(None) is None


def test_artifact_prefers_exported_image_uri() -> None:
    raw = _raw(
        "eval-backend-prod",
        exportedEnvironmentVariables=[
            {"name": "REPOSITORY_URI", "value": ECR},
            {"name": "IMAGE_TAG", "value": "1111111"},
            {"name": "IMAGE_URI", "value": f"{ECR}:2222222"},
        ],
        artifacts={"md5sum": "d41d8cd9", "location": "arn:aws:s3:::bucket/key"},
    )

    artifact = extract_artifact(raw, image_repository=ECR)

    assert artifact.image_uri == f"{ECR}:2222222"
    assert artifact.md5_hash == "d41d8cd9"
    assert artifact.sha256_hash is None


def test_artifact_composes_repository_and_tag() -> None:
    raw = _raw(
        "eval-backend-prod",
        exportedEnvironmentVariables=[
            {"name": "REPOSITORY_URI", "value": ECR},
            {"name": "IMAGE_TAG", "value": "1111111"},
        ],
    )

    assert extract_artifact(raw).image_uri == f"{ECR}:1111111"


def test_artifact_falls_back_to_configured_repository() -> None:
    artifact = extract_artifact(_raw("eval-backend-prod"), image_repository=ECR)

    assert artifact.image_uri == f"{ECR}:abcdef1"
    assert artifact.tag == "abcdef1"


def test_artifact_without_any_image_source() -> None:
    assert extract_artifact(_raw("eval-backend-prod")).image_uri is None


def test_build_record_from_raw() -> None:
    raw = _raw(
        "eval-backend-devbranchtest",
        "pr/123",
        buildNumber=42,
        buildStatus="TIMED_OUT",
        startTime=datetime(2025, 9, 20, 12, 0, tzinfo=timezone.utc),
        endTime="2025-09-20T12:05:30Z",
        logs={"groupName": "/aws/codebuild/eval-backend-devbranchtest"},
        environment=_env(TRIGGERED_FOR_PR="123"),
    )

    record = build_record_from_raw(raw, classify_build(raw, RULES))

    assert record.build_number == 42
    assert record.status is BuildStatus.TIMED_OUT
    assert record.category is BuildCategory.DEV_TEST
    assert record.pr_number == "123"
    assert record.duration_seconds == 330
    assert record.short_commit == "abcdef1"
    assert record.log_group == "/aws/codebuild/eval-backend-devbranchtest"
    assert record.to_dict()["type"] == "dev-test"
