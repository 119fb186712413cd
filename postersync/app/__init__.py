"""Application layer: lifecycle and user-action facade."""
