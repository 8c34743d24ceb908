"""Drive CMS: versioned caching proxy for Google Drive folders, sheets and docs."""

__version__ = "1.0.0"
