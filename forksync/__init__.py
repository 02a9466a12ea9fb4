"""
forksync — Fork synchronization and promotion pipeline.
"""

__version__ = "1.0.0"
