"""Production unit provisioning and step tracking."""
