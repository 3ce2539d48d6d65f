"""Intake core: debounced field validation, gated wizards and duplicate resolution."""

__version__ = "0.1.0"
