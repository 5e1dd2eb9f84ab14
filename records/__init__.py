"""Record schemas, field descriptors and store adapters."""
