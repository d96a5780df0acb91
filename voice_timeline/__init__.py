"""Voice-activity timeline engine: speaking intervals and the live views derived from them."""

__version__ = "0.1.0"
