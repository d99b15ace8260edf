"""Bill splitting by claimed receipt items."""

__version__ = "0.1.0"
