"""
Integration tests running whole workflow phases against the fake platform.
"""
