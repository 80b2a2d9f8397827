"""Shared test doubles for fetchbeat tests."""
