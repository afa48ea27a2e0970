"""Storage backends and the factory that wires them together."""
