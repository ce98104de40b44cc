"""HTTP adapter over the bittersweet store."""
