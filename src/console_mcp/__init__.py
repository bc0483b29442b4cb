# ABOUTME: Console MCP Server package initialization
# ABOUTME: Exposes version information

"""
Console MCP Server - project configuration and deploys via Model Context Protocol.

=============================================================================
WHAT DOES THIS SERVER DO?
=============================================================================

It lets an MCP client (an AI assistant) work on console projects:

- READ a project's configuration at a revision, version or environment
- ADD resources to it (services, endpoints, collections, config maps, ...)
  by merging them into the stored configuration and saving a new commit
- DEPLOY a revision or version to an environment, preview what a deploy
  would change, and wait for the deploy pipeline to finish

Writes are off by default (MCP_READ_ONLY=true).

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

console_mcp/
├── __init__.py          <- Package entry point
├── config.py            <- Settings from environment variables
├── configuration.py     <- Configuration merge-and-save
├── deploy.py            <- Deploy pipeline watcher
├── endpoints.py         <- Custom and CRUD endpoint descriptors
├── errors.py            <- ConsoleError, ServiceAlreadyExistsError, PipelineTimeoutError
├── server.py            <- FastMCP server with all tools and resources
└── utils/
    ├── __init__.py
    ├── auth.py          <- Client-credentials token cache
    ├── client.py        <- HTTP client for the console REST API
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only mode and rate limiting
"""

# Version 0.x.x: the tool surface may still change between minor releases.
__version__ = "0.1.0"

# The server is started through the console-mcp command; internal modules are
# imported directly when needed.
__all__ = ["__version__"]
