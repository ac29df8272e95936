"""
Click commands; every module exposes a top-level ``cli`` command.
"""
