"""Unit provisioning: serials, QR artifacts, and the creation saga."""
