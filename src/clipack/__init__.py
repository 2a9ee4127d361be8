"""clipack - a declarative command-line package manager."""

__version__ = "0.3.0"
