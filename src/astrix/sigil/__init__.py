"""Sigil - ECDSA/secp256k1 signing identity."""
