"""codetunnel - ephemeral remote code-server sessions over SSH

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Fail fast with helpful guidance

The codetunnel CLI prepares a remote machine with code-server, tunnels it to a
local port, opens it in a browser, and optionally syncs VS Code settings and
extensions in both directions.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
