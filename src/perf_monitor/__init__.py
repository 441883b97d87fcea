"""Live /proc performance sampler with alerting and segmented logs."""
