"""Core domain package for meshwatch.

Core contains decoding, deduplication, grouping and dispatch logic without any
MQTT, SQLite or delivery-specific code, keeping the pipeline portable.
"""
