"""
Authorization check consumed by the edge proxy (ext-authz HTTP mode).
"""
