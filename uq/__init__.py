"""A message queue server with topics, consumer lines, persistent storage and redis, memcached and HTTP front ends."""

__version__ = "0.1.0"