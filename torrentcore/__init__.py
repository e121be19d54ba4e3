"""BitTorrent metainfo, piece layout, and peer wire message handling."""

__version__ = "0.1.0"
__all__ = ["info", "messages", "reader", "writer", "peer"]