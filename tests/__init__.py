"""
Test suite for pgreconcile.

- Unit tests for the schema model, renderer, planner, executors, server and CLI
- Integration tests against a live PostgreSQL
"""
