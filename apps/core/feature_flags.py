"""
Feature flags for controlling discovery behavior.
"""

import os
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

_TRUTHY = ['on', 'true', '1', 'yes']


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


class FeatureFlags:
    """Feature flags manager."""

    def __init__(self):
        self._flags = {}
        self._load_from_env()

    def _load_from_env(self) -> None:
        """Load feature flags from environment variables."""
        # Spot documents with precomputed intel drive the nearby list
        self._flags['INTEL_V1_ENABLED'] = _env_flag('INTEL_V1_ENABLED', 'on')
        # Third-party rating/review signals through the proxy
        self._flags['EXTERNAL_SIGNALS_ENABLED'] = _env_flag('EXTERNAL_SIGNALS_ENABLED', 'on')
        # Merge computed intelligence back onto the spot document
        self._flags['INTEL_WRITEBACK_ENABLED'] = _env_flag('INTEL_WRITEBACK_ENABLED', 'off')
        # Seeded demo check-ins count as real data
        self._flags['DEMO_MODE'] = _env_flag('DEMO_MODE', 'off')

        self._flags['INTEL_PREFETCH_LIMIT'] = int(os.getenv('INTEL_PREFETCH_LIMIT', '12'))

        logger.info(f"Feature flags loaded: {self._flags}")

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a feature flag is enabled."""
        return bool(self._flags.get(flag_name, False))

    def get_value(self, flag_name: str, default: Any = None) -> Any:
        """Get feature flag value."""
        return self._flags.get(flag_name, default)

    def set_flag(self, flag_name: str, value: Any) -> None:
        """Set feature flag value (runtime override)."""
        self._flags[flag_name] = value
        logger.info(f"Feature flag {flag_name} set to {value}")

    def get_all_flags(self) -> Dict[str, Any]:
        """Get all feature flags."""
        return self._flags.copy()

    def reload_from_env(self) -> None:
        """Reload feature flags from environment."""
        self._load_from_env()
        logger.info("Feature flags reloaded from environment")


# Global instance
_feature_flags = None


def get_feature_flags() -> FeatureFlags:
    """Get global feature flags instance."""
    global _feature_flags
    if _feature_flags is None:
        _feature_flags = FeatureFlags()
    return _feature_flags


def reset_feature_flags() -> None:
    """Reset global feature flags instance."""
    global _feature_flags
    _feature_flags = None


def is_intel_v1_enabled() -> bool:
    return get_feature_flags().is_enabled('INTEL_V1_ENABLED')


def is_external_signals_enabled() -> bool:
    return get_feature_flags().is_enabled('EXTERNAL_SIGNALS_ENABLED')


def is_demo_mode() -> bool:
    return get_feature_flags().is_enabled('DEMO_MODE')


def get_discovery_config() -> Dict[str, Any]:
    """Get discovery configuration from feature flags."""
    flags = get_feature_flags()
    return {
        'intel_v1': flags.is_enabled('INTEL_V1_ENABLED'),
        'external_signals': flags.is_enabled('EXTERNAL_SIGNALS_ENABLED'),
        'intel_writeback': flags.is_enabled('INTEL_WRITEBACK_ENABLED'),
        'demo_mode': flags.is_enabled('DEMO_MODE'),
        'intel_prefetch_limit': flags.get_value('INTEL_PREFETCH_LIMIT', 12),
    }
