"""Job definitions: approvable assignment templates."""
