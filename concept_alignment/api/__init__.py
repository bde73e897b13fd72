"""HTTP API for starting and monitoring pipeline runs."""
