"""Pure domain logic: models, parsing, health, alerts and peers."""
