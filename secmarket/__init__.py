"""Event-sourced domain model for a securities marketplace: events, aggregate, commands, repository and service."""

__version__ = "0.1.0"
__all__ = ["aggregate", "commands", "events", "repository", "service"]