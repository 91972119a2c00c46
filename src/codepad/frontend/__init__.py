from .terminal_chat import TerminalChat

__all__ = ["TerminalChat"]
