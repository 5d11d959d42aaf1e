"""External store clients: object storage, record store and identity provider.

Shared by the lifecycle and account managers so that neither depends on a
concrete backend.
"""
