"""
Certificate lifecycle services: issuance, import, renewal, revocation and
private key sealing.
"""
