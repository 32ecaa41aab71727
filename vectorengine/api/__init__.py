"""
Caller-facing engine facade and option models.
"""
