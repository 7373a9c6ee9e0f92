"""Cloud provider discovery adapters."""
