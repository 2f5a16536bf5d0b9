"""Key file ingestion: name/hash lists for batch operations and account lists for batch create."""
