# core/events.py — canonical event type definitions
# All cross-module communication should use these constants as event_type values.

# Printer / monitor events
PRINTER_STATE_CHANGED = "printer.state_changed"       # {printer_id, name, old_state, new_state}
PRINTER_OFFLINE = "printer.offline"                   # {printer_id, name, failures}
PRINTERS_CHANGED = "printer.config_changed"           # {printer_id, action}

# Print completion / reconciliation events
PRINT_COMPLETED = "print.completed"                   # {printer_id, job_label, usage, events}
PRINT_RECONCILE_FAILED = "print.reconcile_failed"     # {printer_id, job_label, error_id, message}
PRINT_ERROR_ACKNOWLEDGED = "print.error_acknowledged" # {error_id}

# Binding events
BINDING_CHANGED = "binding.changed"                   # {printer_id, toolhead_id, spool_id, previous_spool_id}

# Pairing events
PAIRING_UPDATED = "pairing.updated"                   # {session_key, has_spool, has_location}
PAIRING_COMPLETED = "pairing.completed"               # {session_key, spool_id, location}

# Inventory events
LOCATIONS_SYNCED = "inventory.locations_synced"       # {count}
