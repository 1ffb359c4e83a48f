"""Field Observatory: form-driven field data collection service."""

__version__ = "0.1.0"
