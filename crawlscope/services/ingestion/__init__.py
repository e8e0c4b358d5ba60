"""Log ingestion: extraction, filtering, persistence and run control."""
