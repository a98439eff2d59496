"""Lecture recording ingestion."""
