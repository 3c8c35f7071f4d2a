"""
bartok - single-use barcode tokens backed by a TTL key-value store
"""
__version__ = "0.1.0"
