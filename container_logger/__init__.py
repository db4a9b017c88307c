"""Container log shipping daemon: tail, batch, and flush to Azure append blobs or local disk."""
