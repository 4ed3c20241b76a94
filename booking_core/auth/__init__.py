"""Authentication: internal tokens, external identities and principal resolution."""
