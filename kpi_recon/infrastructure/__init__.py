"""
Infrastructure layer - storage adapters.
"""
