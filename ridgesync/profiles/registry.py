"""Built-in project profiles and loading of custom ones from YAML."""

from __future__ import annotations

from pathlib import Path

import yaml

from ridgesync.errors import ConfigError
from ridgesync.profiles.checks import VaultAccessCheck
from ridgesync.profiles.models import ProjectProfile
from ridgesync.profiles.triggers import SystemdUnitTrigger

REQUIRED_PROFILE_FIELDS = ("name", "ssh_identity_name", "lock_file_name", "trigger_unit")


def waf_profile() -> ProjectProfile:
    """WAF host: Ansible playbooks at the repository root."""
    return ProjectProfile(
        name="waf",
        description="WAF host configured by Ansible (site.yml)",
        ssh_identity_name="waf_gitops_ed25519",
        lock_file_name="waf-sync.lock",
        required_paths=["site.yml"],
        optional_paths=["system-maintenance.yml"],
        trigger=SystemdUnitTrigger("waf-ansible.service"),
        post_sync_checks=[VaultAccessCheck()],
    )


def podman_profile() -> ProjectProfile:
    """Podman host: quadlet definitions plus supporting Ansible."""
    return ProjectProfile(
        name="podman",
        description="Podman container host deploying quadlets",
        ssh_identity_name="podman_gitops_ed25519",
        lock_file_name="podman-sync.lock",
        required_paths=["quadlets/"],
        optional_paths=["ansible/"],
        trigger=SystemdUnitTrigger("quadlet-deploy.service"),
    )


BUILTIN_PROFILES = {
    "waf": waf_profile,
    "podman": podman_profile,
}


def _string_list(data: dict, key: str, profile_name: str) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"Profile '{profile_name}': '{key}' must be a list of strings")
    return value


def _vault_check(data, profile_name: str) -> VaultAccessCheck:
    if data is True:
        return VaultAccessCheck()
    if not isinstance(data, dict):
        raise ConfigError(f"Profile '{profile_name}': 'vault_check' must be a mapping or true")
    unknown = set(data) - {"vault_file", "password_script", "timeout"}
    if unknown:
        raise ConfigError(
            f"Profile '{profile_name}': unknown vault_check field(s): {', '.join(sorted(unknown))}"
        )
    return VaultAccessCheck(**data)


def profile_from_dict(data: dict) -> ProjectProfile:
    """Build a profile from one mapping of a profiles YAML file."""
    if not isinstance(data, dict):
        raise ConfigError(f"Profile entry must be a mapping, got {type(data).__name__}")

    name = data.get("name", "<unnamed>")
    missing = [f for f in REQUIRED_PROFILE_FIELDS if not data.get(f)]
    if missing:
        raise ConfigError(f"Profile '{name}' missing required field(s): {', '.join(missing)}")

    trigger = SystemdUnitTrigger(
        data["trigger_unit"],
        settle_seconds=float(data.get("trigger_settle_seconds", 2.0)),
    )
    profile = ProjectProfile(
        name=data["name"],
        description=data.get("description", ""),
        ssh_identity_name=data["ssh_identity_name"],
        lock_file_name=data["lock_file_name"],
        required_paths=_string_list(data, "required_paths", name),
        optional_paths=_string_list(data, "optional_paths", name),
        trigger=trigger,
    )
    if "executable_patterns" in data:
        profile.executable_patterns = _string_list(data, "executable_patterns", name)
    if "vault_check" in data:
        profile.post_sync_checks.append(_vault_check(data["vault_check"], name))
    return profile


def load_profiles(path: str | Path) -> dict[str, ProjectProfile]:
    """Load custom profiles from a YAML file with a top-level ``profiles`` list."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Profiles file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("profiles", []), list):
        raise ConfigError(f"{path}: expected a top-level 'profiles' list")

    profiles = {}
    for entry in data.get("profiles", []):
        profile = profile_from_dict(entry)
        profiles[profile.name] = profile
    return profiles


def available_profiles(profiles_file: str | Path | None = None) -> dict[str, ProjectProfile]:
    """Built-in profiles, overridden and extended by those in ``profiles_file``."""
    profiles = {name: factory() for name, factory in BUILTIN_PROFILES.items()}
    if profiles_file:
        profiles.update(load_profiles(profiles_file))
    return profiles


def get_profile(name: str, profiles_file: str | Path | None = None) -> ProjectProfile:
    profiles = available_profiles(profiles_file)
    try:
        return profiles[name]
    except KeyError:
        raise ConfigError(
            f"Unknown profile '{name}'. Available: {', '.join(sorted(profiles))}"
        ) from None
