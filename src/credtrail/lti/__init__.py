"""
LTI 1.3 launch engine: OIDC login initiation, launch validation, identity
linking, session issuance and deep-linking responses.
"""
