"""API routers for corpusguard."""
