"""
Core infrastructure: event broker and credential resolution
"""
