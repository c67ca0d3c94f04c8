"""
Social Ingest - scheduled ingestion of project social activity and catalog metadata.
"""

__version__ = "0.1.0"
