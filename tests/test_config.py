"""Tests for settings parsing and SyncConfig derivation."""

import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from ridgesync.config import (
    DEFAULT_CONFIG_PATH,
    build_config,
    load_settings,
    parse_settings,
    resolve_config_path,
)
from ridgesync.errors import ConfigError
from ridgesync.profiles.registry import podman_profile, waf_profile


def _write_settings(text: str) -> str:
    f = tempfile.NamedTemporaryFile(mode="w", suffix=".conf", delete=False)
    f.write(text)
    f.close()
    return f.name


WAF_SETTINGS = {
    "REPO_URL": "git@github.com:example/pine-ridge-waf.git",
    "GIT_BRANCH": "main",
    "INSTALL_DIR": "/opt/pine-ridge-waf",
}


# --- Parsing ---


def test_parse_bootstrap_style_file():
    text = (
        "# written by bootstrap\n"
        "REPO_URL=git@github.com:example/pine-ridge-podman.git\n"
        "GIT_BRANCH=feat/moving-to-ansible\n"
        "\n"
        "INSTALL_DIR=/opt/pine-ridge-podman\n"
        "QUADLET_DIR=/etc/containers/systemd\n"
        "MANAGEMENT_USER=ops\n"
    )
    settings = parse_settings(text)
    assert settings["GIT_BRANCH"] == "feat/moving-to-ansible"
    assert settings["QUADLET_DIR"] == "/etc/containers/systemd"
    assert settings["MANAGEMENT_USER"] == "ops"


def test_parse_quotes_export_and_comments():
    text = 'export PROFILE="waf"\nINSTALL_DIR=\'/opt/pine ridge\'  # trailing\nEMPTY=\n'
    settings = parse_settings(text)
    assert settings["PROFILE"] == "waf"
    assert settings["INSTALL_DIR"] == "/opt/pine ridge"
    assert settings["EMPTY"] == ""


def test_parse_rejects_garbage_line():
    with pytest.raises(ConfigError, match="line 2"):
        parse_settings("REPO_URL=x\nthis is not a setting\n")


def test_parse_rejects_unbalanced_quote():
    with pytest.raises(ConfigError):
        parse_settings('REPO_URL="git@github.com:example/x.git\n')


def test_load_settings_missing_file():
    with pytest.raises(ConfigError, match="not found"):
        load_settings("/nonexistent/ridgesync.conf")


def test_environment_overrides_file():
    path = _write_settings("REPO_URL=git@github.com:a/b.git\nGIT_BRANCH=main\nINSTALL_DIR=/opt/x\n")
    settings = load_settings(path, environ={"GIT_BRANCH": "develop", "UNRELATED": "1"})
    assert settings["GIT_BRANCH"] == "develop"
    assert "UNRELATED" not in settings


def test_resolve_config_path(monkeypatch):
    assert resolve_config_path("/tmp/explicit.conf") == Path("/tmp/explicit.conf")
    assert resolve_config_path() == DEFAULT_CONFIG_PATH
    monkeypatch.setenv("RIDGESYNC_CONFIG", "/etc/pine-ridge-waf.conf")
    assert resolve_config_path() == Path("/etc/pine-ridge-waf.conf")


# --- Derivation ---


def test_build_config_derives_paths_from_profile():
    config = build_config(WAF_SETTINGS, waf_profile())

    assert config.profile == "waf"
    assert config.working_copy_path == Path("/opt/pine-ridge-waf/repo")
    assert config.log_path == Path("/opt/pine-ridge-waf/logs/sync.log")
    assert config.ssh_identity_path == Path("/root/.ssh/waf_gitops_ed25519")
    assert config.lock_path == Path("/var/run/waf-sync.lock")
    assert config.emergency_marker_path == Path("/opt/pine-ridge-waf/NO_DEPLOY")
    assert config.update_strategy == "pull"
    assert config.git_timeout == 120
    assert config.trigger_timeout == 30
    assert config.management_user is None


def test_build_config_overrides():
    settings = dict(
        WAF_SETTINGS,
        SSH_DIR="/home/ops/.ssh",
        LOCK_DIR="/run/ridgesync",
        EMERGENCY_MARKER="/etc/pine-ridge/stop",
        GIT_TIMEOUT="45",
        TRIGGER_TIMEOUT="60",
        UPDATE_STRATEGY="reset",
        MANAGEMENT_USER="ops",
    )
    config = build_config(settings, podman_profile())

    assert config.ssh_identity_path == Path("/home/ops/.ssh/podman_gitops_ed25519")
    assert config.lock_path == Path("/run/ridgesync/podman-sync.lock")
    assert config.emergency_marker_path == Path("/etc/pine-ridge/stop")
    assert config.git_timeout == 45
    assert config.trigger_timeout == 60
    assert config.update_strategy == "reset"
    assert config.management_user == "ops"


def test_default_branch_is_main():
    settings = {k: v for k, v in WAF_SETTINGS.items() if k != "GIT_BRANCH"}
    assert build_config(settings, waf_profile()).target_branch == "main"


def test_pathed_branch_accepted():
    config = build_config(dict(WAF_SETTINGS, GIT_BRANCH="feat/new-thing"), waf_profile())
    assert config.target_branch == "feat/new-thing"


@pytest.mark.parametrize("branch", ["feat..x", "-rf", "has space", "trailing/", "x.lock"])
def test_invalid_branch_rejected(branch):
    with pytest.raises(ConfigError, match="target_branch"):
        build_config(dict(WAF_SETTINGS, GIT_BRANCH=branch), waf_profile())


def test_missing_required_setting():
    settings = {k: v for k, v in WAF_SETTINGS.items() if k != "INSTALL_DIR"}
    with pytest.raises(ConfigError, match="INSTALL_DIR"):
        build_config(settings, waf_profile())


def test_invalid_strategy_and_timeout():
    with pytest.raises(ConfigError, match="update_strategy"):
        build_config(dict(WAF_SETTINGS, UPDATE_STRATEGY="merge"), waf_profile())
    with pytest.raises(ConfigError, match="git_timeout"):
        build_config(dict(WAF_SETTINGS, GIT_TIMEOUT="0"), waf_profile())
    with pytest.raises(ConfigError, match="trigger_timeout"):
        build_config(dict(WAF_SETTINGS, TRIGGER_TIMEOUT="soon"), waf_profile())


def test_config_is_immutable():
    config = build_config(WAF_SETTINGS, waf_profile())
    with pytest.raises(ValidationError):
        config.target_branch = "develop"
