"""card-watch: marketplace listing monitor for collectible cards."""

__version__ = "0.1.0"
