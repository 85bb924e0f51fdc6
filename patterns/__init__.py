"""Reusable patterns the storefront is built from.

Each module is a self-contained pattern: rules engines, workflow state
machines, repository layers, and domain configuration.
"""
