"""CodeBuild listing and batch lookups."""

from __future__ import annotations

from deploy_lens.sources.base import AwsSource

_BATCH_GET_LIMIT = 100


class CodeBuildSource(AwsSource):
    service = "codebuild"

    async def list_build_ids(self, project_name: str, max_results: int = 10) -> list[str]:
        """Most recent build ids for *project_name*, newest first."""
        response = await self._call(
            "list_builds_for_project",
            projectName=project_name,
            sortOrder="DESCENDING",
        )
        ids = response.get("ids") or []
        return [str(build_id) for build_id in ids][:max_results]

    async def batch_get_builds(self, build_ids: list[str]) -> list[dict[str, object]]:
        builds: list[dict[str, object]] = []
        for start in range(0, len(build_ids), _BATCH_GET_LIMIT):
            chunk = build_ids[start : start + _BATCH_GET_LIMIT]
            if not chunk:
                continue
            response = await self._call("batch_get_builds", ids=chunk)
            builds.extend(b for b in response.get("builds") or [] if isinstance(b, dict))
        return builds
