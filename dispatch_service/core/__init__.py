"""Core application components: settings, exceptions, database base classes, services."""
