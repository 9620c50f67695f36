"""RiskGate models package.

  - responses.py  builders for every client-facing terminal response
                  (403 deny, 401/403 auth, 400 validation, 502 upstream,
                  500 config, 404 not found)
"""
