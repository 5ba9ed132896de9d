"""
Access Permissions engine.
"""
