"""Domain services of the order pipeline."""
