"""Collection-to-extraction pipeline for forum restaurant mentions."""
