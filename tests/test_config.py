"""
Tests for leadsmith/config.py and leadsmith/errors.py
"""

import json

import pytest

from leadsmith import config
from leadsmith.config import (
    DEFAULT_DATA_DIR,
    ApiToggle,
    Settings,
    calculate_cost,
    default_settings_path,
    invalidate_settings_cache,
    is_api_enabled,
    load_settings,
    map_api_name_to_key,
    resolve_data_dir,
)
from leadsmith.errors import ConfigError, ErrorCode, build_error


class TestDataDir:

    def test_payload_wins(self):
        assert resolve_data_dir({"config": {"data_dir": "/srv/leads"}}) == "/srv/leads"

    def test_env(self, data_dir):
        assert resolve_data_dir() == str(data_dir)

    def test_default(self, monkeypatch):
        monkeypatch.delenv("LEADSMITH_DATA_DIR", raising=False)
        monkeypatch.delenv("DATA_DIR", raising=False)
        assert resolve_data_dir() == DEFAULT_DATA_DIR == "./data"


class TestApiNames:

    @pytest.mark.parametrize(
        "name, key",
        [
            ("Skip-tracing (Person Details)", "skip-tracing"),
            ("skip-tracing (phone discovery)", "skip-tracing"),
            ("Telnyx", "telnyx-lookup"),
            ("Income by Zip", "income-by-zip"),
            ("Some New API!", "some-new-api"),
        ],
    )
    def test_map_api_name_to_key(self, name, key):
        assert map_api_name_to_key(name) == key


class TestIsApiEnabled:

    def test_defaults_enabled(self):
        assert is_api_enabled("Telnyx", Settings())
        assert is_api_enabled("Not In Registry", Settings())

    def test_toggle_off(self):
        settings = Settings(api_toggles={"telnyx-lookup": ApiToggle(enabled=False)})
        assert not is_api_enabled("Telnyx", settings)
        assert is_api_enabled("Skip-tracing (Phone Discovery)", settings)

    def test_registry_dependency_off(self):
        settings = Settings(api_toggles={"skip-tracing": ApiToggle(enabled=False)})
        assert not is_api_enabled("Telnyx", settings)

    def test_toggle_declared_dependency_off(self):
        settings = Settings(
            api_toggles={
                "income-by-zip": ApiToggle(enabled=True, dependencies=["dnc-scrub"]),
                "dnc-scrub": ApiToggle(enabled=False),
            }
        )
        assert not is_api_enabled("Income by Zip", settings)

    def test_cost_estimate(self):
        # skip-tracing 25 + telnyx 4 (locked, counted by default)
        assert calculate_cost(Settings()) == 29.0
        settings = Settings(api_toggles={"income-by-zip": ApiToggle(enabled=True)})
        assert calculate_cost(settings, lead_count=2000) == 60.0


class TestLoadSettings:

    def test_missing_file_gives_defaults(self, data_dir):
        settings = load_settings(str(data_dir / "nope.yaml"))
        assert settings.output.default_destination == "csv"
        assert settings.cooldown.enabled is False

    def test_yaml_with_camel_case_keys(self, data_dir):
        path = data_dir / "settings.yaml"
        path.write_text(
            "apiToggles:\n"
            "  telnyx-lookup: {enabled: false}\n"
            "rateThrottle: normal\n"
            "output:\n"
            "  defaultDestination: webhook\n"
            "  webhookUrl: https://hooks.example.com/x\n"
            "  retry: {maxRetries: 1}\n"
            "cooldown: {enabled: true, errorThreshold: 3, pauseDuration: 60}\n",
            encoding="utf-8",
        )

        settings = load_settings()

        assert default_settings_path() == str(path)
        assert settings.rate_throttle == "normal"
        assert settings.api_toggles["telnyx-lookup"].enabled is False
        assert settings.output.webhook_url == "https://hooks.example.com/x"
        assert settings.output.retry.max_retries == 1
        assert settings.cooldown.error_threshold == 3

    def test_json_file(self, data_dir):
        path = data_dir / "settings.json"
        path.write_text(json.dumps({"rateThrottle": "safe"}), encoding="utf-8")
        assert load_settings(str(path)).rate_throttle == "safe"

    def test_cached_until_invalidated(self, data_dir):
        path = data_dir / "settings.yaml"
        path.write_text("rateThrottle: safe\n", encoding="utf-8")
        assert load_settings().rate_throttle == "safe"

        path.write_text("rateThrottle: aggressive\n", encoding="utf-8")
        assert load_settings().rate_throttle == "safe"

        invalidate_settings_cache()
        assert load_settings().rate_throttle == "aggressive"

    @pytest.mark.parametrize("content", ["rateThrottle: [unclosed\n", "rateThrottle: turbo\n"])
    def test_bad_file_raises_config_error(self, data_dir, content):
        path = data_dir / "settings.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            load_settings(str(path))

    def test_settings_file_env_override(self, data_dir, monkeypatch):
        monkeypatch.setattr(config, "SETTINGS_FILE", str(data_dir / "custom.yaml"))
        assert default_settings_path() == str(data_dir / "custom.yaml")


class TestBuildError:

    def test_masks_context_and_truncates(self):
        record = build_error(
            ErrorCode.NETWORK_ERROR,
            RuntimeError("x" * 300),
            {"email": "jane@example.com", "phone": "5125550100", "step": "telnyx"},
        )
        assert record["code"] == "NETWORK_ERROR"
        assert record["retryable"] is True
        assert len(record["message"]) == 200
        assert record["context"] == {"email": "j***@example.com", "phone": "XXXXXXXX0100", "step": "telnyx"}

    def test_without_exception(self):
        record = build_error(ErrorCode.CONFIG_ERROR)
        assert record == {"code": "CONFIG_ERROR", "retryable": False, "message": "Error: CONFIG_ERROR"}

    def test_config_error_code(self):
        assert ConfigError("bad").code == ErrorCode.CONFIG_ERROR
        assert not ConfigError("bad").retryable
