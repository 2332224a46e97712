"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Endpoint paths, polling defaults, status interval table
- exceptions: Custom exception hierarchy
"""
