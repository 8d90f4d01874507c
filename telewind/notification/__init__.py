"""Dispatch scheduling and delivery workers."""
