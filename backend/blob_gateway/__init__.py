"""
Azure Blob Gateway: upload, list, download and share blobs over HTTP.
"""
__version__ = "0.1.0"
