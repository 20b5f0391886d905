"""Compile job orchestration for the Cuboid document editor."""

__version__ = "0.1.0"
