"""
Minno server: Slack assistant backend.
"""

__version__ = "0.1.0"
