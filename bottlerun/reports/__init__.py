"""CSV exports and printable manifests."""
