"""
Command-line interface for Scrollwork.
"""
