# ABOUTME: Utilities package initialization for Console MCP Server
# ABOUTME: Contains shared utilities for client, auth, safety, and logging

"""
Console MCP Utilities Package

Shared utilities:
    - client.py: Console API client wrapper with retry logic
    - auth.py: Client-credentials token exchange and caching
    - safety.py: Read-only mode and rate limiting
    - logging.py: Structured logging with correlation IDs and audit trail
"""
