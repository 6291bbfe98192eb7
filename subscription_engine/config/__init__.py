"""
Configuration management for the subscription engine.
"""

from .settings import Config, load_config_from_env_file

__all__ = ['Config', 'load_config_from_env_file']
