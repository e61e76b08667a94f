"""HTTP relay for fetching feeds from browser clients."""
