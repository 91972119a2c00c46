"""Streaming normalization: chunk parsers and the transport loop.

The engine lives in ``codepad.streaming.engine``; it is not re-exported here
because the provider wire table imports the parsers from this package.
"""

from .parsers import parse_anthropic_line, parse_ollama_line, parse_openai_line

__all__ = ["parse_anthropic_line", "parse_ollama_line", "parse_openai_line"]
