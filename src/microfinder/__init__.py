"""MicroFinder discovery pipeline: analyse microscope images and keep the results."""

__version__ = "0.1.0"
