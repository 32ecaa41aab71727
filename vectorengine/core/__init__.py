"""
Database registry, multi-database search, configuration and errors.
"""
