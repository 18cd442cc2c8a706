"""Model Context Protocol server framework: tools, prompts, resources and sessions over JSON-RPC."""

__version__ = "0.1.0"