"""
Configuration management and loading.

Handles provider/model definitions, tier mappings, routing rules and
budget settings, loaded from YAML files or built-in defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from tier_router.core.errors import ConfigError, UnknownModelReferenceError
from tier_router.core.tiers import STRATEGY_TIERS, Strategy, parse_strategy

CONFIG_PATH_ENV = "TIER_ROUTER_CONFIG_PATH"
DATA_PATH_ENV = "TIER_ROUTER_DATA_PATH"
LOG_LEVEL_ENV = "TIER_ROUTER_LOG_LEVEL"

PROVIDERS_FILE = "providers.yaml"
RULES_FILE = "rules.yaml"

BLOCK_HIGH_TIER = "block_high_tier"
KNOWN_ALERT_ACTIONS = ("log_warning", "notify_user", "require_confirmation", BLOCK_HIGH_TIER)


@dataclass(frozen=True)
class ModelConfig:
    """Pricing and limits for a single model."""
    id: str
    input_cost_per_mtok: float
    output_cost_per_mtok: float
    max_tokens: int
    context_window: int

    def __post_init__(self):
        """Validate model values."""
        if not self.id:
            raise ConfigError("model id cannot be empty")
        if self.input_cost_per_mtok < 0:
            raise ConfigError("input_cost_per_mtok must be >= 0")
        if self.output_cost_per_mtok < 0:
            raise ConfigError("output_cost_per_mtok must be >= 0")
        if self.max_tokens <= 0:
            raise ConfigError("max_tokens must be > 0")
        if self.context_window <= 0:
            raise ConfigError("context_window must be > 0")


@dataclass(frozen=True)
class ProviderConfig:
    """A backend provider and the models it serves."""
    api_key_env: str
    models: Dict[str, ModelConfig]
    base_url: Optional[str] = None


@dataclass(frozen=True)
class KeywordRule:
    """Keyword rule mapping task text to a tier per strategy."""
    name: str
    patterns: Tuple[str, ...]
    target_tier: Dict[str, str]
    priority: int

    def target_for(self, strategy: Strategy) -> Optional[str]:
        return self.target_tier.get(strategy.value)


@dataclass(frozen=True)
class ErrorEscalationConfig:
    """Error escalation parameters."""
    enabled: bool
    threshold: int
    window_minutes: float
    action: str = "escalate_one_tier"

    def __post_init__(self):
        """Validate escalation values."""
        if self.threshold <= 0:
            raise ConfigError("error_escalation.threshold must be > 0")
        if self.window_minutes <= 0:
            raise ConfigError("error_escalation.window_minutes must be > 0")


@dataclass(frozen=True)
class CostOptimizationConfig:
    """Substrings that mark a task as simple enough for the lowest tier."""
    enabled: bool
    simple_task_patterns: Tuple[str, ...]
    action: str = "suggest_lower_tier"


@dataclass(frozen=True)
class RulesConfig:
    """Complete rule table used by the tier policy."""
    keyword_rules: Tuple[KeywordRule, ...]
    error_escalation: ErrorEscalationConfig
    cost_optimization: Optional[CostOptimizationConfig] = None


@dataclass(frozen=True)
class AlertThreshold:
    """Budget threshold and the action it triggers."""
    percent: float
    action: str

    def __post_init__(self):
        """Validate threshold percent."""
        if self.percent < 0:
            raise ConfigError("alert threshold percent must be >= 0")


@dataclass(frozen=True)
class BudgetConfig:
    """Monthly budget with ordered alert thresholds."""
    monthly_limit_usd: float
    alert_thresholds: Tuple[AlertThreshold, ...] = ()

    def __post_init__(self):
        """Validate budget values."""
        if self.monthly_limit_usd < 0:
            raise ConfigError("monthly_limit_usd must be >= 0")


@dataclass(frozen=True)
class DefaultsConfig:
    """Startup strategy and the tier → model mapping for each strategy."""
    provider: str
    strategy: Strategy
    tier_models: Dict[Strategy, Dict[str, str]]


@dataclass(frozen=True)
class RouterConfig:
    """Merged router configuration."""
    providers: Dict[str, ProviderConfig]
    defaults: DefaultsConfig
    rules: Optional[RulesConfig] = None
    budget: Optional[BudgetConfig] = None

    def tier_model_ref(self, strategy: Strategy, tier: str) -> str:
        """Get the "provider:model" reference configured for a tier.

        Raises:
            UnknownModelReferenceError: If no model is mapped to the tier
        """
        ref = self.defaults.tier_models.get(strategy, {}).get(tier)
        if not ref:
            raise UnknownModelReferenceError(
                f"{strategy.value}:{tier}",
                f"No model configured for tier '{tier}' in {strategy.value} strategy",
            )
        return ref

    def resolve_model(self, model_ref: str) -> Tuple[str, str, ModelConfig]:
        """Resolve a model reference into (provider, model name, model config).

        Raises:
            UnknownModelReferenceError: If provider or model is not configured
        """
        provider_name, model_name = parse_model_ref(model_ref)
        provider = self.providers.get(provider_name)
        if provider is None:
            raise UnknownModelReferenceError(model_ref, f"Provider not found: {provider_name}")
        model = provider.models.get(model_name)
        if model is None:
            raise UnknownModelReferenceError(
                model_ref, f"Model not found: {model_name} in provider {provider_name}"
            )
        return provider_name, model_name, model


def parse_model_ref(model_ref: str) -> Tuple[str, str]:
    """Split a "provider:model" reference.

    Raises:
        UnknownModelReferenceError: If the reference is malformed
    """
    parts = model_ref.split(":") if model_ref else []
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise UnknownModelReferenceError(
            str(model_ref),
            f"Invalid model reference: {model_ref}. Expected format: \"provider:model\"",
        )
    return parts[0], parts[1]


def default_router_config() -> RouterConfig:
    """Built-in configuration used when no config files exist."""
    models = {
        "haiku": ModelConfig(
            id="claude-3-haiku-20240307",
            input_cost_per_mtok=0.25,
            output_cost_per_mtok=1.25,
            max_tokens=4096,
            context_window=200000,
        ),
        "sonnet": ModelConfig(
            id="claude-sonnet-4-20250514",
            input_cost_per_mtok=3.0,
            output_cost_per_mtok=15.0,
            max_tokens=8192,
            context_window=200000,
        ),
        "opus": ModelConfig(
            id="claude-opus-4-5-20251101",
            input_cost_per_mtok=15.0,
            output_cost_per_mtok=75.0,
            max_tokens=8192,
            context_window=200000,
        ),
    }
    top_tiers = {"2-tier": "critical", "3-tier": "tier3"}
    return RouterConfig(
        providers={
            "anthropic": ProviderConfig(
                api_key_env="ANTHROPIC_API_KEY",
                models=models,
                base_url="https://api.anthropic.com/v1/",
            )
        },
        defaults=DefaultsConfig(
            provider="anthropic",
            strategy=Strategy.TWO_TIER,
            tier_models={
                Strategy.TWO_TIER: {
                    "primary": "anthropic:sonnet",
                    "critical": "anthropic:opus",
                },
                Strategy.THREE_TIER: {
                    "tier1": "anthropic:haiku",
                    "tier2": "anthropic:sonnet",
                    "tier3": "anthropic:opus",
                },
            },
        ),
        rules=RulesConfig(
            keyword_rules=(
                KeywordRule(
                    name="architecture_keywords",
                    patterns=("architecture", "design decision", "system design", "refactor", "restructure"),
                    target_tier=dict(top_tiers),
                    priority=100,
                ),
                KeywordRule(
                    name="security_keywords",
                    patterns=("security", "authentication", "authorization", "vulnerability", "encryption"),
                    target_tier=dict(top_tiers),
                    priority=90,
                ),
                KeywordRule(
                    name="exploration_keywords",
                    patterns=("explore", "search", "find", "list", "what is", "how to"),
                    target_tier={"2-tier": "primary", "3-tier": "tier1"},
                    priority=50,
                ),
                KeywordRule(
                    name="implementation_keywords",
                    patterns=("implement", "code", "create", "add", "fix", "debug"),
                    target_tier={"2-tier": "primary", "3-tier": "tier2"},
                    priority=60,
                ),
            ),
            error_escalation=ErrorEscalationConfig(
                enabled=True,
                threshold=3,
                window_minutes=30,
                action="escalate_one_tier",
            ),
            cost_optimization=CostOptimizationConfig(
                enabled=True,
                simple_task_patterns=("list files", "show status", "get info", "read file"),
                action="suggest_lower_tier",
            ),
        ),
        budget=default_budget(100.0),
    )


def default_budget(monthly_limit_usd: float) -> BudgetConfig:
    return BudgetConfig(
        monthly_limit_usd=monthly_limit_usd,
        alert_thresholds=(
            AlertThreshold(50, "log_warning"),
            AlertThreshold(80, "notify_user"),
            AlertThreshold(95, "require_confirmation"),
            AlertThreshold(100, BLOCK_HIGH_TIER),
        ),
    )


def load_router_config(config_dir: str) -> RouterConfig:
    """Load and validate router configuration from a directory.

    `providers.yaml` is required; `rules.yaml` is optional. Validation is
    strict: unknown keys and missing required keys are rejected so a typo
    cannot silently disable a rule or a budget threshold.

    Args:
        config_dir: Directory containing the YAML files

    Returns:
        Validated RouterConfig

    Raises:
        FileNotFoundError: If providers.yaml doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigError: If configuration is invalid
    """
    base = Path(config_dir)
    providers_path = base / PROVIDERS_FILE
    if not providers_path.exists():
        raise FileNotFoundError(f"Required config file not found: {providers_path}")

    providers_raw = _read_yaml(providers_path)
    _check_keys(providers_raw, {"providers", "defaults"}, PROVIDERS_FILE, required={"providers", "defaults"})

    providers = _parse_providers(providers_raw["providers"])
    defaults = _parse_defaults(providers_raw["defaults"])

    rules = None
    budget = None
    rules_path = base / RULES_FILE
    if rules_path.exists():
        rules_raw = _read_yaml(rules_path)
        _check_keys(rules_raw, {"auto_upgrade_rules", "budget"}, RULES_FILE)
        if "auto_upgrade_rules" in rules_raw:
            rules = _parse_rules(rules_raw["auto_upgrade_rules"])
        if "budget" in rules_raw:
            budget = _parse_budget(rules_raw["budget"], "budget")

    config = RouterConfig(providers=providers, defaults=defaults, rules=rules, budget=budget)
    _check_model_refs(config)
    return config


def load_config_or_default(config_dir: Optional[str] = None) -> RouterConfig:
    """Load config from `config_dir` (or the env path) if present, else defaults."""
    config_dir = config_dir or os.environ.get(CONFIG_PATH_ENV, "config")
    if (Path(config_dir) / PROVIDERS_FILE).exists():
        return load_router_config(config_dir)
    return default_router_config()


def _read_yaml(path: Path) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")
    if not raw:
        raise ConfigError(f"Configuration file is empty: {path}", str(path))
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}", str(path))
    return raw


def _check_keys(data: Any, allowed: set, path: str, required: Optional[set] = None) -> None:
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must be a dictionary")
    unknown = set(data.keys()) - allowed
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {unknown}")
    for key in sorted(required or ()):
        if key not in data:
            raise ConfigError(f"Missing required '{key}' in {path}")


def _number(data: Dict, key: str, path: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' in {path} must be a number")
    return value


def _parse_providers(data: Any) -> Dict[str, ProviderConfig]:
    if not isinstance(data, dict) or not data:
        raise ConfigError("'providers' must be a non-empty dictionary")

    providers = {}
    for name, provider_data in data.items():
        path = f"providers.{name}"
        _check_keys(provider_data, {"base_url", "api_key_env", "models"}, path,
                    required={"api_key_env", "models"})
        models_data = provider_data["models"]
        if not isinstance(models_data, dict) or not models_data:
            raise ConfigError(f"'models' in {path} must be a non-empty dictionary")

        models = {}
        model_keys = {"id", "input_cost_per_mtok", "output_cost_per_mtok", "max_tokens", "context_window"}
        for model_name, model_data in models_data.items():
            model_path = f"{path}.models.{model_name}"
            _check_keys(model_data, model_keys, model_path, required=model_keys)
            models[model_name] = ModelConfig(
                id=str(model_data["id"]),
                input_cost_per_mtok=float(_number(model_data, "input_cost_per_mtok", model_path)),
                output_cost_per_mtok=float(_number(model_data, "output_cost_per_mtok", model_path)),
                max_tokens=int(_number(model_data, "max_tokens", model_path)),
                context_window=int(_number(model_data, "context_window", model_path)),
            )

        providers[name] = ProviderConfig(
            api_key_env=str(provider_data["api_key_env"]),
            models=models,
            base_url=provider_data.get("base_url"),
        )
    return providers


def _parse_defaults(data: Any) -> DefaultsConfig:
    _check_keys(data, {"provider", "strategy", "tier_models"}, "defaults",
                required={"provider", "strategy", "tier_models"})
    try:
        strategy = parse_strategy(data["strategy"])
    except ValueError as e:
        raise ConfigError(f"defaults.strategy: {e}")

    tier_models_data = data["tier_models"]
    expected = {s.value for s in Strategy}
    _check_keys(tier_models_data, expected, "defaults.tier_models", required=expected)

    tier_models = {}
    for strategy_value, mapping in tier_models_data.items():
        member = Strategy(strategy_value)
        tiers = set(STRATEGY_TIERS[member])
        path = f"defaults.tier_models.{strategy_value}"
        _check_keys(mapping, tiers, path, required=tiers)
        tier_models[member] = {tier: str(ref) for tier, ref in mapping.items()}

    return DefaultsConfig(provider=str(data["provider"]), strategy=strategy, tier_models=tier_models)


def _parse_rules(data: Any) -> RulesConfig:
    path = "auto_upgrade_rules"
    _check_keys(data, {"keyword_rules", "error_escalation", "cost_optimization"}, path,
                required={"keyword_rules", "error_escalation"})

    rules_data = data["keyword_rules"]
    if not isinstance(rules_data, list):
        raise ConfigError(f"'keyword_rules' in {path} must be a list")

    strategy_values = {s.value for s in Strategy}
    keyword_rules = []
    for index, rule_data in enumerate(rules_data):
        rule_path = f"{path}.keyword_rules[{index}]"
        keys = {"name", "patterns", "target_tier", "priority"}
        _check_keys(rule_data, keys, rule_path, required=keys)
        patterns = rule_data["patterns"]
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ConfigError(f"'patterns' in {rule_path} must be a list of strings")
        target_tier = rule_data["target_tier"]
        _check_keys(target_tier, strategy_values, f"{rule_path}.target_tier")
        for strategy_value, tier in target_tier.items():
            if tier not in STRATEGY_TIERS[Strategy(strategy_value)]:
                raise ConfigError(
                    f"Tier '{tier}' in {rule_path}.target_tier is not valid for {strategy_value}"
                )
        keyword_rules.append(KeywordRule(
            name=str(rule_data["name"]),
            patterns=tuple(patterns),
            target_tier=dict(target_tier),
            priority=int(_number(rule_data, "priority", rule_path)),
        ))

    escalation_data = data["error_escalation"]
    escalation_path = f"{path}.error_escalation"
    keys = {"enabled", "threshold", "window_minutes", "action"}
    _check_keys(escalation_data, keys, escalation_path, required={"enabled", "threshold", "window_minutes"})
    error_escalation = ErrorEscalationConfig(
        enabled=bool(escalation_data["enabled"]),
        threshold=int(_number(escalation_data, "threshold", escalation_path)),
        window_minutes=float(_number(escalation_data, "window_minutes", escalation_path)),
        action=str(escalation_data.get("action", "escalate_one_tier")),
    )

    cost_optimization = None
    if "cost_optimization" in data:
        cost_data = data["cost_optimization"]
        cost_path = f"{path}.cost_optimization"
        _check_keys(cost_data, {"enabled", "simple_task_patterns", "action"}, cost_path,
                    required={"enabled", "simple_task_patterns"})
        patterns = cost_data["simple_task_patterns"]
        if not isinstance(patterns, list):
            raise ConfigError(f"'simple_task_patterns' in {cost_path} must be a list")
        cost_optimization = CostOptimizationConfig(
            enabled=bool(cost_data["enabled"]),
            simple_task_patterns=tuple(str(p) for p in patterns),
            action=str(cost_data.get("action", "suggest_lower_tier")),
        )

    return RulesConfig(
        keyword_rules=tuple(keyword_rules),
        error_escalation=error_escalation,
        cost_optimization=cost_optimization,
    )


def _parse_budget(data: Any, path: str) -> BudgetConfig:
    _check_keys(data, {"monthly_limit_usd", "alert_thresholds"}, path, required={"monthly_limit_usd"})
    thresholds_data = data.get("alert_thresholds", [])
    if not isinstance(thresholds_data, list):
        raise ConfigError(f"'alert_thresholds' in {path} must be a list")

    thresholds = []
    for index, threshold_data in enumerate(thresholds_data):
        threshold_path = f"{path}.alert_thresholds[{index}]"
        _check_keys(threshold_data, {"percent", "action"}, threshold_path, required={"percent", "action"})
        action = threshold_data["action"]
        if action not in KNOWN_ALERT_ACTIONS:
            raise ConfigError(f"'action' in {threshold_path} must be one of: {list(KNOWN_ALERT_ACTIONS)}")
        thresholds.append(AlertThreshold(
            percent=float(_number(threshold_data, "percent", threshold_path)),
            action=action,
        ))

    return BudgetConfig(
        monthly_limit_usd=float(_number(data, "monthly_limit_usd", path)),
        alert_thresholds=tuple(thresholds),
    )


def _check_model_refs(config: RouterConfig) -> None:
    """Every tier mapping must resolve to a configured provider model."""
    for strategy, mapping in config.defaults.tier_models.items():
        for tier, ref in mapping.items():
            try:
                config.resolve_model(ref)
            except UnknownModelReferenceError as e:
                raise ConfigError(f"defaults.tier_models.{strategy.value}.{tier}: {e}")
    if config.defaults.provider not in config.providers:
        raise ConfigError(f"defaults.provider '{config.defaults.provider}' is not a configured provider")
