"""Pure domain layer: clock, enums, value objects and domain events."""
