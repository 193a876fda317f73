"""Shared test doubles for trackwire tests."""
