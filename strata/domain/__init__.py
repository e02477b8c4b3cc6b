"""Models, relationship descriptors and the execution context."""
