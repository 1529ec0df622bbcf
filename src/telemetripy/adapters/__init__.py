"""Adapters connecting the core to frameworks, transports and logging."""
