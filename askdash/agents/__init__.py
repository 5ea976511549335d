"""
askdash Agents Module

Pipeline stages that turn a question into a guarded SQL statement.

Available Agents:
    - BaseAgent: Abstract base class with timing, logging and error wrapping
    - QueryInterpreterAgent: Question -> Intent (language-model backed)
    - SQLSynthesizerAgent: Intent -> single read-only SELECT (deterministic)
    - QueryGuard: Safety policy and row-level security rewrite (not an agent;
      never raises)

The execution stage lives in ``askdash.database.router``.

Usage:
    from askdash.agents import QueryGuard, QueryInterpreterAgent, SQLSynthesizerAgent
"""

from askdash.agents.base import BaseAgent
from askdash.agents.guard import QueryGuard
from askdash.agents.interpreter import QueryInterpreterAgent
from askdash.agents.synthesizer import SQLSynthesizerAgent

__all__ = [
    "BaseAgent",
    "QueryGuard",
    "QueryInterpreterAgent",
    "SQLSynthesizerAgent",
]
