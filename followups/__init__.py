"""WhatsApp follow-up automation engine."""
