"""Configuration, datastore, errors, observability and request plumbing."""
