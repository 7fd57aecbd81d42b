"""Domain value objects for the approval kernel. Pure, zero I/O."""
