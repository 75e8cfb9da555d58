"""CLI command modules for dockramp."""
