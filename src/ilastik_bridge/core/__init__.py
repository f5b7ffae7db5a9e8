"""Core infrastructure: configuration, logging, events, scratch files, codec."""
