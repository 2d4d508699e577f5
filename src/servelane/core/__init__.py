"""Core building blocks shared by the operator: errors, logging, telemetry and fan-out."""
