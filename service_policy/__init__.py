"""
Policy Service for the Access Layer.
"""
