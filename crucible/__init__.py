"""Crucible — adversarial review/fix loop for coding-agent pipelines."""

__version__ = "0.1.0"
