"""Command-line interface for FlowTask."""
