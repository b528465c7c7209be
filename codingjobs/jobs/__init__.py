"""Background jobs: durable state, queue control, batch execution."""
