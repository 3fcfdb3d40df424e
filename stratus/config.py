"""TOML-based provider, template and provisioning configuration.

Loads ~/.stratus/defaults.toml (global) and stratus.toml (project),
merges them, and resolves named providers and templates.

Example stratus.toml:

    [providers.lab]
    type = "openstack"
    endpoint = "https://keystone.lab:5000/v3"
    identity = "analytics:director"
    region = "RegionOne"

    [templates.worker]
    image = "5b0a0a3e-..."
    flavor = "m1.large"
    network = "0f5e..."
    security_group_names = "default,cluster"
    key_name = "director"
    floating_ip_pool = "public"

    [provisioning]
    timeout = 300
"""

from __future__ import annotations

import tomllib
from dataclasses import fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stratus.api.model import InstanceTemplate
from stratus.provisioning import ProvisioningPolicy

if TYPE_CHECKING:
    from stratus.providers.openstack.config import OpenStack

    type ProviderConfig = OpenStack

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".stratus" / "defaults.toml"
PROJECT_CONFIG_NAME = "stratus.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("providers", {})
    merged.setdefault("templates", {})
    merged.setdefault("provisioning", {})
    return merged


def _get_provider_map() -> dict[str, type]:
    from stratus.providers.openstack.config import OpenStack

    return {"openstack": OpenStack}


def _build_provider(name: str, raw: RawConfig) -> ProviderConfig:
    raw = dict(raw)
    provider_type = raw.pop("type", None)
    if provider_type is None:
        raise ValueError(f"Provider '{name}' missing 'type' field")

    provider_map = _get_provider_map()
    cls = provider_map.get(provider_type)
    if cls is None:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Valid: {', '.join(provider_map)}"
        )
    return cls(**raw)


def resolve_provider(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProviderConfig:
    providers = load_config(project_dir=project_dir, global_path=global_path)["providers"]
    if name not in providers:
        raise KeyError(f"Provider '{name}' not found. Available: {', '.join(providers) or 'none'}")
    return _build_provider(name, providers[name])


def resolve_template(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> InstanceTemplate:
    templates = load_config(project_dir=project_dir, global_path=global_path)["templates"]
    if name not in templates:
        raise KeyError(f"Template '{name}' not found. Available: {', '.join(templates) or 'none'}")
    return InstanceTemplate.from_config(name, templates[name])


def resolve_policy(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProvisioningPolicy:
    raw = load_config(project_dir=project_dir, global_path=global_path)["provisioning"]
    known = {f.name for f in fields(ProvisioningPolicy)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(
            f"Unknown provisioning setting(s): {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    return ProvisioningPolicy(**raw)
