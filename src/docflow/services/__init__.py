"""Review and changeset services."""
