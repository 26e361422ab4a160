"""Repository state summary resource."""
