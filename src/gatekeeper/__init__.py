"""Authorization and progressive-rollout control plane."""

from gatekeeper.config import AppConfig, load_config_from_env

from .app import configure_fastapi_app, create_app

__all__ = ["AppConfig", "configure_fastapi_app", "create_app", "load_config_from_env"]
