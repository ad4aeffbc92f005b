"""Submitting workflows for execution and projecting their results."""
