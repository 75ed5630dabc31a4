"""Building blocks for message-driven applications: logging, retrying publishers, subscriber multiplexing and request/reply."""

__version__ = "0.1.0"