"""Header chain structure and serialized insertion."""
