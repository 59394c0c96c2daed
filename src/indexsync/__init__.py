"""indexsync - keeps a vector search index in step with canonical content records."""

__version__ = "0.3.0"
