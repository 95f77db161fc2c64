"""Connection request state machine and established connections."""
