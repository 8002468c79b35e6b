"""Pure domain layer: DTOs, validation and the injectable clock."""
