"""Campaign lifecycle and balance polling."""
