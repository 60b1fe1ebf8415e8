"""
Mind map graph construction, layout and caching.
"""
__version__ = "0.1.0"
