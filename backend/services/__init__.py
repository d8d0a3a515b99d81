"""
Service layer for the Search Console sync engine.
"""
