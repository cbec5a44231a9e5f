"""Tests for configuration module."""

import json
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from render_tracker.config import (
    RenderSettings,
    SettingsContext,
    get_settings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from tests.conftest import env


class TestRenderSettings:
    def test_default_values(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = RenderSettings()

        assert settings.engine_url == "http://127.0.0.1:8765"
        assert settings.poll_interval == 5.0
        assert settings.message_duration == 3.0
        assert settings.resolved_preview_limit == 3
        assert settings.log_level == "warning"
        assert settings.log_format == "console"

    def test_environment_override(self):
        with env(poll_interval="2.5", engine_url="http://render:9000"):
            settings = RenderSettings()

        assert settings.poll_interval == 2.5
        assert settings.engine_url == "http://render:9000"

    def test_constructor_beats_environment(self):
        with env(poll_interval="2.5"):
            settings = RenderSettings(poll_interval=1.0)
        assert settings.poll_interval == 1.0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("poll_interval", 0),
            ("message_duration", -1),
            ("resolved_preview_limit", -1),
            ("log_level", "verbose"),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            RenderSettings(**{field: value})

    def test_project_json_config(self, mock_context):
        config_dir = mock_context.workspace_dir / ".render_tracker"
        config_dir.mkdir()
        (config_dir / "settings.json").write_text(
            json.dumps({"message_duration": 7.5, "resolved_preview_limit": 5})
        )

        settings = RenderSettings()

        assert settings.message_duration == 7.5
        assert settings.resolved_preview_limit == 5

    def test_environment_beats_json_config(self, mock_context):
        config_dir = mock_context.workspace_dir / ".render_tracker"
        config_dir.mkdir()
        (config_dir / "settings.json").write_text(json.dumps({"poll_interval": 9}))

        with env(poll_interval="3"):
            settings = RenderSettings()

        assert settings.poll_interval == 3.0


class TestSettingsAccessors:
    def test_set_settings(self):
        custom = RenderSettings(poll_interval=1.0)
        set_settings(custom)
        assert get_settings() is custom

    def test_settings_context_overrides_global(self, settings):
        scoped = RenderSettings(poll_interval=0.5)

        with SettingsContext(scoped) as active:
            assert active is scoped
            assert get_settings() is scoped

        assert get_settings() is settings

    def test_set_context_settings_token(self):
        scoped = RenderSettings(poll_interval=0.5)
        token = set_context_settings(scoped)
        assert get_settings() is scoped
        set_context_settings(None)
        assert token is not None

    def test_reload_settings(self, settings):
        fresh = reload_settings()
        assert fresh is not settings
        assert get_settings() is fresh
