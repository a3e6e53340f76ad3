"""Dependency graph and the config resolver that builds it."""

from .config import BuildConfig, ImportSpec, ResolvedTarget, build_config
from .dag import DependencyGraph, NodeKind

__all__ = ["BuildConfig", "DependencyGraph", "ImportSpec", "NodeKind", "ResolvedTarget", "build_config"]
