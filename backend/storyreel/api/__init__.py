"""HTTP API exposing the pipeline entry points."""
