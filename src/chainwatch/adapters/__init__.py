"""Adapters connecting the core to networks, processes and files."""
