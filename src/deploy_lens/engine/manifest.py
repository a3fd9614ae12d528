"""Reader for the ``imagedefinitions.json`` manifest inside a source bundle."""

from __future__ import annotations

import io
import json
import zipfile

from deploy_lens.domain.models import image_tag
from deploy_lens.errors import MalformedArtifactError

MANIFEST_NAME = "imagedefinitions.json"
COMMIT_PREFIX_LENGTH = 7


def read_image_definitions(bundle: bytes) -> list[dict[str, object]]:
    try:
        with zipfile.ZipFile(io.BytesIO(bundle)) as archive:
            with archive.open(MANIFEST_NAME) as handle:
                content = handle.read().decode("utf-8")
    except KeyError as exc:
        raise MalformedArtifactError(f"{MANIFEST_NAME} not found in bundle") from exc
    except (zipfile.BadZipFile, UnicodeDecodeError, OSError) as exc:
        raise MalformedArtifactError(f"Unreadable source bundle: {exc}") from exc

    try:
        definitions = json.loads(content)
    except json.JSONDecodeError as exc:
        raise MalformedArtifactError(f"Invalid {MANIFEST_NAME}: {exc.msg}") from exc
    if not isinstance(definitions, list):
        raise MalformedArtifactError(f"{MANIFEST_NAME} must be a JSON array")
    return [item for item in definitions if isinstance(item, dict)]


def deployed_image_uri(bundle: bytes) -> str:
    """First ``imageUri`` listed in the bundle's manifest."""
    definitions = read_image_definitions(bundle)
    if not definitions:
        raise MalformedArtifactError(f"{MANIFEST_NAME} lists no images")
    image_uri = definitions[0].get("imageUri")
    if not isinstance(image_uri, str) or not image_uri.strip():
        raise MalformedArtifactError(f"{MANIFEST_NAME} entry has no imageUri")
    return image_uri.strip()


def commit_from_image_uri(image_uri: str | None) -> str | None:
    tag = image_tag(image_uri)
    if not tag:
        return None
    return tag[:COMMIT_PREFIX_LENGTH]
