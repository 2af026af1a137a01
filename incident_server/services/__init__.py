"""HTTP clients for the retrieval, analysis and ingestion services."""
