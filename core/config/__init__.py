# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the deployment engine.
"""

from core.config.defaults import (
    StorageBackend,
    EngineDefaults,
    QuotaDefaults,
    DatabaseDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "StorageBackend",
    "EngineDefaults",
    "QuotaDefaults",
    "DatabaseDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
