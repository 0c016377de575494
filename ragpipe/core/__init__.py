"""Configuration, storage plumbing, errors and build progress tracking."""
