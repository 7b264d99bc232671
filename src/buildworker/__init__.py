"""Build worker: runs a project build and publishes its artifacts to S3."""
