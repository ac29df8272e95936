"""
Command plugins discovered by the CLI.
"""
