"""Preview environment agent: forward auth, wake-on-demand and idle eviction."""

__version__ = "0.1.0"
