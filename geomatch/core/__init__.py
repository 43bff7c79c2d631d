"""Index handle, catalog, aggregation and the predict pipeline."""
