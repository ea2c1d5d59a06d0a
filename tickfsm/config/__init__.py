"""Configuration module for tickfsm."""

from tickfsm.config.settings import CompilerConfig, load_config

__all__ = ["CompilerConfig", "load_config"]
