"""
Headless consuming views. Each one owns exactly one tracker subscription,
taken in open() and released in close().
"""
