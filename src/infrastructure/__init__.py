"""Infrastructure adapters: HTTP range access and reverse geocoding."""
