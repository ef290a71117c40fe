"""
Marketplace chat client: conversation directory, message sync,
presence & typing, and admin ticket triage.
"""
__version__ = "1.0.0"
