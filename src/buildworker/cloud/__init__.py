"""AWS boundaries: configuration, S3 uploads and SSM parameters."""
