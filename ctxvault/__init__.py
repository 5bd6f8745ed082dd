"""ctxvault - version control for a knowledge/context corpus."""

__version__ = "0.1.0"
