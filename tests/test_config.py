"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for provider and rule configs.
"""

import copy
import os
import tempfile

import pytest
import yaml

from tier_router.config.loader import (
    BLOCK_HIGH_TIER,
    CONFIG_PATH_ENV,
    default_router_config,
    load_config_or_default,
    load_router_config,
    parse_model_ref,
)
from tier_router.core.errors import ConfigError, UnknownModelReferenceError
from tier_router.core.tiers import Strategy

PROVIDERS = {
    "providers": {
        "local": {
            "base_url": "http://localhost:8000/v1/",
            "api_key_env": "LOCAL_API_KEY",
            "models": {
                "small": {
                    "id": "small-1",
                    "input_cost_per_mtok": 0.5,
                    "output_cost_per_mtok": 1.5,
                    "max_tokens": 2048,
                    "context_window": 8192,
                },
                "large": {
                    "id": "large-1",
                    "input_cost_per_mtok": 10,
                    "output_cost_per_mtok": 30,
                    "max_tokens": 4096,
                    "context_window": 32768,
                },
            },
        }
    },
    "defaults": {
        "provider": "local",
        "strategy": "3-tier",
        "tier_models": {
            "2-tier": {"primary": "local:small", "critical": "local:large"},
            "3-tier": {"tier1": "local:small", "tier2": "local:small", "tier3": "local:large"},
        },
    },
}

RULES = {
    "auto_upgrade_rules": {
        "keyword_rules": [
            {
                "name": "deep_work",
                "patterns": ["migrate", "rewrite"],
                "target_tier": {"2-tier": "critical", "3-tier": "tier3"},
                "priority": 80,
            }
        ],
        "error_escalation": {"enabled": True, "threshold": 2, "window_minutes": 10},
        "cost_optimization": {"enabled": False, "simple_task_patterns": ["ls"]},
    },
    "budget": {
        "monthly_limit_usd": 25,
        "alert_thresholds": [
            {"percent": 75, "action": "notify_user"},
            {"percent": 100, "action": "block_high_tier"},
        ],
    },
}


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, data, filename: str) -> None:
        with open(os.path.join(self.temp_dir, filename), "w", encoding="utf-8") as f:
            yaml.dump(data, f)

    def test_valid_config_loads_correctly(self):
        self._write(PROVIDERS, "providers.yaml")
        self._write(RULES, "rules.yaml")

        config = load_router_config(self.temp_dir)

        assert config.defaults.strategy is Strategy.THREE_TIER
        assert config.providers["local"].base_url == "http://localhost:8000/v1/"
        assert config.providers["local"].models["large"].input_cost_per_mtok == 10.0
        assert config.rules.keyword_rules[0].patterns == ("migrate", "rewrite")
        assert config.rules.keyword_rules[0].target_for(Strategy.TWO_TIER) == "critical"
        assert config.rules.error_escalation.threshold == 2
        assert config.rules.error_escalation.action == "escalate_one_tier"
        assert config.rules.cost_optimization.enabled is False
        assert config.budget.monthly_limit_usd == 25.0
        assert [t.percent for t in config.budget.alert_thresholds] == [75.0, 100.0]
        assert config.budget.alert_thresholds[1].action == BLOCK_HIGH_TIER

    def test_rules_file_is_optional(self):
        self._write(PROVIDERS, "providers.yaml")

        config = load_router_config(self.temp_dir)

        assert config.rules is None
        assert config.budget is None

    def test_missing_providers_file(self):
        with pytest.raises(FileNotFoundError, match="Required config file not found"):
            load_router_config(self.temp_dir)

    def test_empty_file_rejected(self):
        with open(os.path.join(self.temp_dir, "providers.yaml"), "w", encoding="utf-8") as f:
            f.write("")

        with pytest.raises(ConfigError, match="Configuration file is empty"):
            load_router_config(self.temp_dir)

    def test_invalid_yaml_rejected(self):
        with open(os.path.join(self.temp_dir, "providers.yaml"), "w", encoding="utf-8") as f:
            f.write("providers: [unclosed\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_router_config(self.temp_dir)

    def test_unknown_top_level_key_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        data["extra"] = True
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="Unknown keys in providers.yaml"):
            load_router_config(self.temp_dir)

    def test_missing_model_field_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        del data["providers"]["local"]["models"]["small"]["max_tokens"]
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="Missing required 'max_tokens'"):
            load_router_config(self.temp_dir)

    def test_negative_price_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        data["providers"]["local"]["models"]["small"]["input_cost_per_mtok"] = -1
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="input_cost_per_mtok must be >= 0"):
            load_router_config(self.temp_dir)

    def test_non_numeric_price_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        data["providers"]["local"]["models"]["small"]["output_cost_per_mtok"] = "cheap"
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="must be a number"):
            load_router_config(self.temp_dir)

    def test_unknown_strategy_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        data["defaults"]["strategy"] = "5-tier"
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="defaults.strategy"):
            load_router_config(self.temp_dir)

    def test_tier_mapping_must_cover_strategy(self):
        data = copy.deepcopy(PROVIDERS)
        del data["defaults"]["tier_models"]["3-tier"]["tier2"]
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="Missing required 'tier2'"):
            load_router_config(self.temp_dir)

    def test_tier_mapping_to_unknown_model_rejected(self):
        data = copy.deepcopy(PROVIDERS)
        data["defaults"]["tier_models"]["2-tier"]["critical"] = "local:huge"
        self._write(data, "providers.yaml")

        with pytest.raises(ConfigError, match="Model not found: huge"):
            load_router_config(self.temp_dir)

    def test_rule_target_outside_strategy_rejected(self):
        self._write(PROVIDERS, "providers.yaml")
        rules = copy.deepcopy(RULES)
        rules["auto_upgrade_rules"]["keyword_rules"][0]["target_tier"]["2-tier"] = "tier3"
        self._write(rules, "rules.yaml")

        with pytest.raises(ConfigError, match="not valid for 2-tier"):
            load_router_config(self.temp_dir)

    def test_unknown_alert_action_rejected(self):
        self._write(PROVIDERS, "providers.yaml")
        rules = copy.deepcopy(RULES)
        rules["budget"]["alert_thresholds"][0]["action"] = "page_oncall"
        self._write(rules, "rules.yaml")

        with pytest.raises(ConfigError, match="must be one of"):
            load_router_config(self.temp_dir)

    def test_zero_escalation_threshold_rejected(self):
        self._write(PROVIDERS, "providers.yaml")
        rules = copy.deepcopy(RULES)
        rules["auto_upgrade_rules"]["error_escalation"]["threshold"] = 0
        self._write(rules, "rules.yaml")

        with pytest.raises(ConfigError, match="threshold must be > 0"):
            load_router_config(self.temp_dir)

    def test_load_or_default_uses_env_path(self, monkeypatch):
        self._write(PROVIDERS, "providers.yaml")
        monkeypatch.setenv(CONFIG_PATH_ENV, self.temp_dir)

        config = load_config_or_default()

        assert "local" in config.providers

    def test_load_or_default_falls_back(self):
        config = load_config_or_default(self.temp_dir)

        assert "anthropic" in config.providers


class TestDefaultConfig:
    """Test built-in configuration."""

    def test_default_tier_models_resolve(self):
        config = default_router_config()
        for strategy, mapping in config.defaults.tier_models.items():
            for tier, ref in mapping.items():
                provider, model, model_config = config.resolve_model(ref)
                assert provider == "anthropic"
                assert model_config.id

    def test_default_rules(self):
        config = default_router_config()
        names = [rule.name for rule in config.rules.keyword_rules]
        assert names == [
            "architecture_keywords",
            "security_keywords",
            "exploration_keywords",
            "implementation_keywords",
        ]
        assert config.rules.error_escalation.threshold == 3
        assert config.rules.error_escalation.window_minutes == 30

    def test_default_budget(self):
        budget = default_router_config().budget
        assert budget.monthly_limit_usd == 100.0
        assert [t.percent for t in budget.alert_thresholds] == [50, 80, 95, 100]


class TestModelReferences:
    """Test provider:model reference handling."""

    def test_parse_model_ref(self):
        assert parse_model_ref("anthropic:opus") == ("anthropic", "opus")

    @pytest.mark.parametrize("ref", ["opus", "a:b:c", ":opus", "anthropic:", ""])
    def test_malformed_ref_rejected(self, ref):
        with pytest.raises(UnknownModelReferenceError, match="Expected format"):
            parse_model_ref(ref)

    def test_unknown_provider(self):
        config = default_router_config()
        with pytest.raises(UnknownModelReferenceError, match="Provider not found: openai") as exc_info:
            config.resolve_model("openai:gpt-4")
        assert exc_info.value.model_ref == "openai:gpt-4"

    def test_unknown_model(self):
        config = default_router_config()
        with pytest.raises(UnknownModelReferenceError, match="Model not found: gpt-4"):
            config.resolve_model("anthropic:gpt-4")
