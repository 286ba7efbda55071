"""
Command-line interface for caseshelf.
"""
