"""
Unix socket front end for Scrollwork.

Newline-delimited JSON requests in, one JSON response line per request out.
"""
