"""On-disk repository files: layout, marker, manifest, summary, contacts."""
