"""MobSF report proxy: scan watching and idempotent report caching in front of MobSF."""

__version__ = "0.1.0"
