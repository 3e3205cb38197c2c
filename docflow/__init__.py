"""Document workflow engine: store, approval state machine, audit trail and reports."""
