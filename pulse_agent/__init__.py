"""
Pulse - planning agent and autonomous workflow automation for Linear
"""

__version__ = "1.0.0"
