"""Pytest configuration and fixtures for agentgrid tests.

Protects the user's real configuration from test modifications.
"""

import shutil
from pathlib import Path

import pytest


@pytest.fixture(scope="session", autouse=True)
def protect_user_config():
    """Back up ~/.agentgrid/config.toml before the run and restore it after."""
    config_path = Path.home() / ".agentgrid" / "config.toml"
    backup_path = Path.home() / ".agentgrid" / ".config.toml.pytest-backup"

    config_existed = config_path.exists()
    if config_existed:
        shutil.copy2(config_path, backup_path)

    yield

    if config_existed and backup_path.exists():
        shutil.copy2(backup_path, config_path)
        backup_path.unlink()
    elif backup_path.exists():
        backup_path.unlink()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point ConfigManager's default config directory at tmp_path.

    Example:
        def test_something(isolated_config):
            ConfigManager.save_config(config)  # lands in tmp_path
    """
    from agentgrid.config_manager import ConfigManager

    config_dir = tmp_path / ".agentgrid"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    return config_dir
