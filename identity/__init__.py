"""
Identity Backend

Multi-role identity service: signed credential pairs, server-side
sessions, an email availability cache and registration cleanup.
"""

__version__ = "0.1.0"
