"""Remote service clients, artifact storage and the local transcoder."""
