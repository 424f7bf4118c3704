"""Pure domain primitives: clock, workflow state machines, field validators."""
