"""REST surface for the coordination core."""
