"""Consolidated Canvas dashboard aggregation."""
