"""
RoundStats Integrations - External service integrations.

This module contains:
- steam: Steam Web API profile lookups
"""

__all__: list[str] = []
