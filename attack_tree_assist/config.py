"""
Configuration schema and defaults for the Attack Tree Assistant.

Provides validation and default values for all configuration options.
Partial dictionaries (e.g. a study's ``config.json``) are merged onto the
defaults section by section, so an override never loses sibling keys.
"""

import copy
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict


DEFAULT_SUGGEST = {
    "min_score": 0.35,
    "top_k": 3,
    "more_k": 7,
    "parent_bonus": 0.25,            # typical child of the selected parent
    "parent_scenario_bonus": 0.2,    # ...and relevant to the active scenario
    "scenario_bonus": 0.2,           # scenario pool base bonus
    "common_scenario_bonus": 0.1,    # common pool, if relevant to the scenario
    "semantic_bonus": 0.15,          # semantic pool (oracle neighbours of the parent)
    "gold_bonus": 0.25,              # scenario must-have
    "synergy_bonus": 0.20,           # other half of a synergy pair is present
    "accept_child_cap": 4,           # children attached when planting a fresh root
}

DEFAULT_PRUNE = {
    "max_visible": 3,
    "flag_threshold": 0.45,
    # Lower = more severe
    "scores": {
        "empty_gate": 0.10,
        "unary_gate": 0.20,
        "and_alternatives": 0.25,
        "unlinked": 0.30,
        "duplicate": 0.20,
        "distractor": 0.35,
        "off_topic": 0.15,
        "vague": 0.45,
    },
}

DEFAULT_MATCHING = {
    "t_high": 0.86,     # same concept (dedup, equivalent resolution)
    "t_med": 0.72,      # close enough to present as a candidate match
    "t_match": 0.72,    # token Jaccard threshold used by the evaluator
    "t_hint": 0.4,      # weakest fuzzy match still offered as a "closest match" hint
    "max_returned": 10, # cap on suggestions once feed entries are merged in
    "weights": {"token": 0.6, "trigram": 0.3, "edit": 0.1},
    "vocabulary_fuzzy_min": 90,
    "semantic": {
        "enabled": False,
        "threshold": 0.6,
        "top_k": 3,
        "timeout": 0.25,
    },
}

DEFAULT_SEVERITY_WEIGHTS = {"high": 0.7, "medium": 0.5, "low": 0.3, "unknown": 0.4}

# Patterns that generalize across scenarios (fallback suggestions)
DEFAULT_COMMON_IDS = [
    'credential_stuffing', 'phishing_credentials', 'password_spraying',
    'password_reset_flow', 'intercept_reset_email',
    'use_stolen_account_saved_card', 'use_leaked_card_details',
    'stack_discounts_referrals', 'item_not_received_refund',
    'join_home_wifi', 'access_local_interface_rtsp', 'default_admin_password',
    'default_stream_key', 'predictable_link_enumeration', 'find_exposed_links_public',
    'use_shared_device_history', 'phishing_for_link',
]

DEFAULT_SYNERGY_PAIRS = [
    {
        "a": "password_reset_flow",
        "b": "intercept_reset_email",
        "text": "Password reset typically requires BOTH requesting a reset AND accessing the reset email.",
    },
]

# Independent ways of reaching the same sub-goal; grouping two of them under
# an AND gate usually means the author wanted OR.
DEFAULT_AND_ALTERNATIVES = {
    "credential_acquisition": [
        'credential_stuffing', 'phishing_credentials', 'password_spraying',
        'use_stolen_password', 'guess_weak_password', 'keylogger_capture',
    ],
    "payment_fraud": [
        'use_stolen_account_saved_card', 'use_leaked_card_details',
        'stack_discounts_referrals', 'item_not_received_refund',
    ],
    "iot_entry": [
        'default_admin_password', 'access_local_interface_rtsp', 'default_stream_key',
    ],
}

DEFAULT_SECURITY_VOCABULARY = [
    'password', 'credential', 'login', 'token', 'session', 'injection',
    'privilege', 'access', 'api', 'payment', 'wifi', 'camera', 'default',
    'admin', 'bucket', 'key', 'cookie', 'otp', 'code', 'phish', 'reset',
    'email', 'card', 'refund', 'stream', 'link', 'exploit', 'malware',
    'brute', 'spoof', 'intercept', 'steal', 'stolen', 'leak', 'mfa', '2fa',
    'sms', 'router', 'firmware', 'network', 'server', 'database', 'sql',
    'xss', 'csrf', 'vulnerability', 'backdoor', 'impersonate', 'social',
]

DEFAULT_GENERIC_TERMS = [
    'thing', 'things', 'stuff', 'misc', 'other', 'todo', 'tbd', 'step',
    'task', 'node', 'attack', 'hack', 'bypass', 'something',
]

DEFAULT_EXPERIMENT = {"mode": "kb", "scenario": "auth"}

# Wizard-of-Oz feed: a remote JSON document of hand-picked suggestions
DEFAULT_WOZ = {
    "enabled": False,
    "remote_url": "",
    "poll_ms": 4000,
    "max_backoff_ms": 60000,
    "score_boost": 0.3,
}

# camelCase keys from the study's config.json
_KEY_ALIASES = {
    "minScore": "min_score",
    "topK": "top_k",
    "moreK": "more_k",
    "limitTop": "top_k",
    "limitMore": "more_k",
    "flagThreshold": "flag_threshold",
    "maxVisible": "max_visible",
    "maxReturned": "max_returned",
    "remoteUrl": "remote_url",
    "pollMs": "poll_ms",
    "maxBackoffMs": "max_backoff_ms",
    "scoreBoost": "score_boost",
}


def _snake_keys(d: Dict[str, Any]) -> Dict[str, Any]:
    """Rename known camelCase keys (one level deep)."""
    return {_KEY_ALIASES.get(k, k): v for k, v in d.items()}


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Override values take precedence. Nested dicts are merged recursively
    so partial overrides don't lose sibling keys from the base.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def _clamp(value, low, high):
    return max(low, min(high, value))


@dataclass
class AssistConfig:
    """Complete configuration for the suggest / prune / explain engines."""

    suggest: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_SUGGEST))
    prune: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_PRUNE))
    matching: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_MATCHING))
    severity_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS))

    common_ids: List[str] = field(default_factory=lambda: list(DEFAULT_COMMON_IDS))
    synergy_pairs: List[Dict[str, str]] = field(default_factory=lambda: [dict(p) for p in DEFAULT_SYNERGY_PAIRS])
    and_alternatives: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_AND_ALTERNATIVES.items()})

    security_vocabulary: List[str] = field(default_factory=lambda: list(DEFAULT_SECURITY_VOCABULARY))
    generic_terms: List[str] = field(default_factory=lambda: list(DEFAULT_GENERIC_TERMS))

    experiment: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_EXPERIMENT))
    woz: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_WOZ))

    # Raw config dictionary (for accessing non-typed fields)
    _raw_config: Dict[str, Any] = field(default_factory=dict)

    def get_raw(self, key: str, default: Any = None) -> Any:
        """Get a raw config value that may not be in the typed schema."""
        return self._raw_config.get(key, default)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'AssistConfig':
        """Create config from dictionary, using defaults for missing keys."""
        suggest = merge_configs(copy.deepcopy(DEFAULT_SUGGEST), _snake_keys(d.get('suggest') or {}))
        prune = merge_configs(copy.deepcopy(DEFAULT_PRUNE), _snake_keys(d.get('prune') or {}))
        matching = merge_configs(copy.deepcopy(DEFAULT_MATCHING), _snake_keys(d.get('matching') or {}))
        matching['semantic'] = _snake_keys(matching['semantic'])
        severity_weights = merge_configs(DEFAULT_SEVERITY_WEIGHTS, d.get('severity_weights') or {})

        pairs = []
        for pair in d.get('synergy_pairs', DEFAULT_SYNERGY_PAIRS) or []:
            if isinstance(pair, dict) and pair.get('a') and pair.get('b'):
                pairs.append({'a': pair['a'], 'b': pair['b'], 'text': pair.get('text', '')})

        cfg = cls(
            suggest=suggest,
            prune=prune,
            matching=matching,
            severity_weights=severity_weights,
            common_ids=list(d.get('common_ids', DEFAULT_COMMON_IDS) or []),
            synergy_pairs=pairs,
            and_alternatives={k: list(v) for k, v in
                              (d.get('and_alternatives', DEFAULT_AND_ALTERNATIVES) or {}).items()},
            security_vocabulary=list(d.get('security_vocabulary', DEFAULT_SECURITY_VOCABULARY) or []),
            generic_terms=list(d.get('generic_terms', DEFAULT_GENERIC_TERMS) or []),
            experiment=merge_configs(DEFAULT_EXPERIMENT, d.get('experiment') or {}),
            woz=merge_configs(DEFAULT_WOZ, _snake_keys(d.get('woz') or {})),
            _raw_config=d,  # Store raw config for non-typed access
        )

        # Validate ranges: clamp to safe bounds
        cfg.suggest['min_score'] = _clamp(float(cfg.suggest['min_score']), 0.0, 5.0)
        cfg.suggest['top_k'] = _clamp(int(cfg.suggest['top_k']), 0, 50)
        cfg.suggest['more_k'] = _clamp(int(cfg.suggest['more_k']), 0, 100)
        cfg.suggest['accept_child_cap'] = _clamp(int(cfg.suggest['accept_child_cap']), 0, 20)
        cfg.prune['max_visible'] = _clamp(int(cfg.prune['max_visible']), 0, 100)
        cfg.prune['flag_threshold'] = _clamp(float(cfg.prune['flag_threshold']), 0.0, 1.0)
        for key in ('t_high', 't_med', 't_match', 't_hint'):
            cfg.matching[key] = _clamp(float(cfg.matching[key]), 0.0, 1.0)
        cfg.matching['semantic']['threshold'] = _clamp(float(cfg.matching['semantic']['threshold']), 0.0, 1.0)
        cfg.matching['semantic']['top_k'] = _clamp(int(cfg.matching['semantic']['top_k']), 1, 50)
        cfg.matching['max_returned'] = _clamp(int(cfg.matching['max_returned']), 1, 100)
        cfg.woz['poll_ms'] = _clamp(int(cfg.woz['poll_ms']), 250, 3600000)
        cfg.woz['max_backoff_ms'] = _clamp(int(cfg.woz['max_backoff_ms']), cfg.woz['poll_ms'], 3600000)
        cfg.woz['score_boost'] = float(cfg.woz['score_boost'])

        return cfg

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding raw config)."""
        d = asdict(self)
        d.pop('_raw_config', None)
        return d

    @property
    def t_high(self) -> float:
        return self.matching['t_high']

    @property
    def t_med(self) -> float:
        return self.matching['t_med']

    @property
    def weights(self) -> Dict[str, float]:
        return self.matching['weights']

    def get_semantic_config(self) -> Dict[str, Any]:
        """Get configuration dict for the semantic oracle."""
        return dict(self.matching['semantic'])

    def prune_score(self, defect: str) -> float:
        return self.prune['scores'][defect]


# Default configuration
DEFAULT_CONFIG = AssistConfig()


def load_config(config_dict: Optional[Dict[str, Any]] = None) -> AssistConfig:
    """
    Load configuration from dictionary or return defaults.

    Args:
        config_dict: Optional configuration dictionary

    Returns:
        AssistConfig instance
    """
    if config_dict is None:
        return AssistConfig()
    return AssistConfig.from_dict(config_dict)
