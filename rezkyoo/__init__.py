"""RezKyoo - finds a restaurant table by calling restaurants in parallel."""

__version__ = "0.1.0"
