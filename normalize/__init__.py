"""
Normalize package: fixed record shapes and the converters that build them from backend replies.
"""
