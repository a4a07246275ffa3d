from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml

from service_probe.checks.http_check import ServiceCheck, service_check_factory
from service_probe.config import settings
from service_probe.models import AgentConfig, Registry


def load_registry(path: Optional[Path] = None) -> Registry:
    path = path or settings.SERVICE_CHECKS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Missing checks.yml at {path}")

    data = yaml.safe_load(path.read_text()) or {}
    reg = Registry.model_validate(data)

    # Probes are keyed by name
    seen = set()
    for target in reg.checks:
        if target.name in seen:
            raise ValueError(f"Duplicate check name: {target.name}")
        seen.add(target.name)

    return reg


def agent_for(reg: Registry) -> AgentConfig:
    """Agent settings from the environment, with the file's overrides on top."""
    base = settings.agent_config().model_dump()
    base.update(reg.agent.model_dump(exclude_none=True))
    return AgentConfig.model_validate(base)


def build_checks(reg: Registry) -> dict[str, ServiceCheck]:
    agent = agent_for(reg)
    return {
        target.name: service_check_factory(target.name, str(target.url), agent)
        for target in reg.checks
    }
