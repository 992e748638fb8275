"""
Database introspection and GraphQL schema construction.
"""
