"""Helpers shared by the sync agent and the CLI."""
