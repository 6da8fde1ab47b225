"""Containers for alignment records and their operations."""
