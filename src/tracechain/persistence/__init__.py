"""Event log and per-component record stores."""
