"""Price alert evaluation and its background scheduler."""
