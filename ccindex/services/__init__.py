"""Index services: auth and taxonomy boundaries, moderation, listing, ingestion."""
