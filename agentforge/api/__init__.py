"""HTTP surface for queuing builds and reading their progress."""
