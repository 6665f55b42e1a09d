"""FlowTask: local task and workspace storage with a kanban lifecycle."""

__version__ = "0.1.0"
