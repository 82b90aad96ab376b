"""Command-line interface for tasksync."""
