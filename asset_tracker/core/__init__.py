"""
Core: configuration, persistence, authentication and authorization
"""
