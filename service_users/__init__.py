"""
User administration console package.
"""
