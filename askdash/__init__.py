"""
askdash

Natural-language analytics assistant: turns a question into a guarded,
read-only SQL query, executes it and picks a visualization for the result.
"""

__version__ = "0.1.0"
