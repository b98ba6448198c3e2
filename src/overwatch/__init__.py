"""
Claude Overwatch: live session monitoring for concurrently running agents.
"""

__version__ = "0.1.0"
