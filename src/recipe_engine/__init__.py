"""Recipe Engine - recipe content production pipeline."""

__version__ = "1.0.0"
