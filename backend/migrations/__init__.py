"""
Schema bootstrap scripts.
"""
