"""Intent protocol integrations."""
