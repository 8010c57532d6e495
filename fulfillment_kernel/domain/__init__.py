"""Pure domain layer: state machine, commands, value objects, DTOs, clock."""
