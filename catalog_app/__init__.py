"""
Catalog synchronization application package.
"""
