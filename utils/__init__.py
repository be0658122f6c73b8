"""Utility modules for the workflow engine."""
