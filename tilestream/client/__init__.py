"""
Command line client.
"""
