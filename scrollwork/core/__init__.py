"""
Core modules for Scrollwork.

This package contains the agent lifecycle, the usage worker, the shared
usage store and the risk classifier.
"""
