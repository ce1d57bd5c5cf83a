"""
Partner metrics engine

- db: store clients and key namespace
- kv: key-value store contract and backends
- services: models, repository, rank and metrics services
- routers: scheduled job endpoints

Imports are lazy so serverless functions only load what they use.
"""

__all__ = [
    "get_kv_store",
    "RankService",
    "MetricsService",
    "EngineSettings",
]


def __getattr__(name):
    """Lazy attribute access for clean serverless loading."""
    if name == "get_kv_store":
        from mlm.db import get_kv_store
        return get_kv_store
    elif name == "RankService":
        from mlm.services.domains import RankService
        return RankService
    elif name == "MetricsService":
        from mlm.services.domains import MetricsService
        return MetricsService
    elif name == "EngineSettings":
        from mlm.config import EngineSettings
        return EngineSettings
    raise AttributeError(f"module 'mlm' has no attribute '{name}'")
