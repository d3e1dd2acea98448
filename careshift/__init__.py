"""Storage, configuration and MCP surface around the care_allocation engine."""
