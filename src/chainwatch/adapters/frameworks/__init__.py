"""Web framework integrations for the presentation layer."""
