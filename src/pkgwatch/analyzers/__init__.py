"""Analyzers for commit anomalies, vulnerability sources and repository changes."""
