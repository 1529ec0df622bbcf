"""Domain models, sanitizer, encoders and the batcher/aggregator."""
