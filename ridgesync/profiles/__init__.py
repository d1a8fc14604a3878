"""Project profiles: the per-deployment half of a sync.

A profile names the SSH deploy key and lock file of a deployment, lists the
paths its applier needs in the working copy, and knows how to start that
applier. Built-in profiles cover the WAF and Podman hosts; more can be
declared in YAML.
"""

from ridgesync.profiles.checks import PostSyncCheck, VaultAccessCheck
from ridgesync.profiles.models import LayoutReport, ProjectProfile
from ridgesync.profiles.registry import available_profiles, get_profile, load_profiles
from ridgesync.profiles.triggers import SystemdUnitTrigger, TriggerResult

__all__ = [
    "LayoutReport",
    "PostSyncCheck",
    "ProjectProfile",
    "SystemdUnitTrigger",
    "TriggerResult",
    "VaultAccessCheck",
    "available_profiles",
    "get_profile",
    "load_profiles",
]
