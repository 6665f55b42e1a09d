"""Application layer for FlowTask."""

from flowtask.application.commands import CommandHandler

__all__ = ["CommandHandler"]
