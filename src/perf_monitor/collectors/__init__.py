"""Resource collectors reading Linux kernel counters."""
