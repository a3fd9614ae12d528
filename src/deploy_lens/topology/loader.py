"""Topology loader for topology.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from deploy_lens.errors import ConfigurationError
from deploy_lens.topology.models import TopologyConfig


def load_topology(path: str) -> TopologyConfig:
    topology_path = Path(path)
    if not topology_path.exists():
        raise FileNotFoundError(f"Topology file not found: {topology_path}")
    with topology_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Topology file must contain a mapping: {topology_path}")
    try:
        return TopologyConfig.from_yaml(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid topology in {topology_path}: {exc}") from exc
