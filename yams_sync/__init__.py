"""One-way synchronization of a local image tree into a YAMS bucket."""
