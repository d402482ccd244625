"""
Provider adapters, one module per supported service.

Each module exposes ``ADAPTER``, a ``ProviderAdapter`` built from its
functions. Registration happens in ``app.integrations.service``.
"""
