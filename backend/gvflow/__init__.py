"""Global variable resolution and workflow execution service."""
