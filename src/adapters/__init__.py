"""Adapters package for meshwatch."""
