"""Ports (interfaces) and application state shared by tasks/ and connectors/."""
