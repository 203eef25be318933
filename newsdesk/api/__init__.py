"""
Newsdesk HTTP API.
"""
