"""Outer surfaces: configuration, websocket transport and console CLI."""
