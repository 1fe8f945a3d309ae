"""claude-grep: search Claude conversation history."""

__version__ = "1.0.0"
