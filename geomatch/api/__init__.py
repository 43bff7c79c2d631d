"""Request/response and catalog record schemas."""
