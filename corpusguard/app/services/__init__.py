"""Service layer for corpusguard."""
