"""
Recipe Access Gateway service package.
"""
