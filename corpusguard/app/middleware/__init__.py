"""HTTP integration for corpusguard."""
